# pinauth/db/models/pin_credential.py

from sqlalchemy import Column, Integer, String, DateTime, CheckConstraint
from pinauth.core.timeutils import utcnow
from pinauth.db.session import Base

class PinCredential(Base):
    __tablename__ = "pin_credentials"
    __table_args__ = (
        CheckConstraint("phone IS NOT NULL OR email IS NOT NULL", name="ck_pin_credentials_identity"),
        CheckConstraint("failure_count >= 0", name="ck_pin_credentials_failure_count"),
    )

    id = Column(Integer, primary_key=True, index=True)
    phone = Column(String, unique=True, nullable=True, index=True)  # только цифры
    email = Column(String, unique=True, nullable=True, index=True)  # в нижнем регистре
    pin_hash = Column(String, nullable=True)  # NULL - PIN не задан
    failure_count = Column(Integer, nullable=False, default=0)
    locked_until = Column(DateTime, nullable=True)
    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

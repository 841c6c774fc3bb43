from typing import Optional
from pydantic import BaseModel

class IdentitySchema(BaseModel):
    phone: Optional[str] = None
    email: Optional[str] = None

class PinSchema(IdentitySchema):
    pin: str

class AdminResetSchema(IdentitySchema):
    admin_key: str = ""

class SessionTokenRead(BaseModel):
    sessionToken: str
    expiresInMs: int

class PinStatusRead(BaseModel):
    pinSet: bool
    locked: bool
    lockedMinutesRemaining: int
    attempts: int
    attemptsRemaining: int
    sessionActive: bool

class AdminResetRead(BaseModel):
    ok: bool
    rowsAffected: int

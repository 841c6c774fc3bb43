from fastapi import Depends, FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi_utils.tasks import repeat_every
from sqlalchemy.ext.asyncio import AsyncSession
from pinauth.core.config import settings
from pinauth.core.exceptions import StorageError, storage_error_handler
from pinauth.api.v1.endpoints.admin import router as admin_router
from pinauth.api.v1.endpoints.pin import router as pin_router
from pinauth.api.v1.endpoints.session import router as session_router
from pinauth.db.session import engine, Base, get_db, db_healthcheck
from pinauth.services.pin_service import PinService
from pinauth.tasks.cleanup import reap_expired_sessions
import logging

# Настройка логирования
logging.basicConfig(
    level=settings.LOG_LEVEL,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)

app = FastAPI(title=settings.PROJECT_NAME)
api_version = settings.API_V1_STR

# Состояние сессий и лимитера живёт в одном экземпляре сервиса на приложение
app.state.pin_service = PinService.from_settings(settings)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)
app.add_exception_handler(StorageError, storage_error_handler)

# Register routers
app.include_router(pin_router, prefix=f"{api_version}/pin", tags=["pin"])
app.include_router(session_router, prefix=f"{api_version}/session", tags=["session"])
app.include_router(admin_router, prefix=f"{api_version}/admin", tags=["admin"])

@app.middleware("http")
async def log_requests(request: Request, call_next):
    logger.info("%s %s from %s", request.method, request.url.path, request.headers.get("host"))
    return await call_next(request)

@app.get("/health", tags=["health"])
async def health(db: AsyncSession = Depends(get_db)):
    ok, error = await db_healthcheck(db)
    if not ok:
        logger.error("Health check: база данных недоступна: %s", error)
    return {
        "status": "ok" if ok else "degraded",
        "service": settings.PROJECT_NAME,
        "environment": settings.APP_ENV,
        "database": "ok" if ok else "error",
    }

@app.on_event("startup")
async def startup():
    # Создаем таблицы в базе данных
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    logger.info("Startup event completed. Database tables created.")

# Отдельная регистрация повторяющейся задачи
@app.on_event("startup")
@repeat_every(seconds=settings.SESSION_REAP_INTERVAL_SECONDS)
async def schedule_session_cleanup():
    service: PinService = app.state.pin_service
    reap_expired_sessions(service.sessions, service.limiter)

import asyncio
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI

from .config import settings
from .errors import register_error_handlers
from .redis_client import redis_client
from .routers import bookings, consultations, service_packages, services, slots, users
from .services.reminder_checker import reminder_checker_loop

logging.basicConfig(level=settings.log_level)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    task = None
    if settings.reminder_checker_enabled:
        task = asyncio.create_task(reminder_checker_loop())
    yield
    if task is not None:
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass


app = FastAPI(title="Servicebook API", lifespan=lifespan)
register_error_handlers(app)

app.include_router(users.router)
app.include_router(services.router)
app.include_router(service_packages.router)
app.include_router(slots.router)
app.include_router(bookings.router)
app.include_router(consultations.router)


@app.get("/health")
def health():
    try:
        redis_ok = bool(redis_client.ping())
    except Exception:
        logger.exception("Redis health check failed")
        redis_ok = False
    return {"redis": redis_ok}

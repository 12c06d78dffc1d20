import asyncio
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from .config import settings
from .database import engine
from .models.generated import Base
from .redis_client import redis_client
from .routers import appointments, availability, recurrences, slots
from .schemas.recurrences import ConflictRead
from .services.recurrence_extender import recurrence_extender_loop
from .services.scheduling import ConflictError, NotFoundError, ValidationError

logging.basicConfig(
    level=settings.log_level,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    Base.metadata.create_all(bind=engine)

    extender = None
    if settings.recurrence_extender_enabled:
        extender = asyncio.create_task(recurrence_extender_loop())

    yield

    if extender is not None:
        extender.cancel()
        try:
            await extender
        except asyncio.CancelledError:
            pass


app = FastAPI(title="Clinic Agenda API", lifespan=lifespan)

app.include_router(slots.router)
app.include_router(availability.router)
app.include_router(appointments.router)
app.include_router(recurrences.router)


# ===== Error mapping =====
@app.exception_handler(ValidationError)
async def validation_error_handler(request: Request, exc: ValidationError):
    return JSONResponse(status_code=400, content={"detail": str(exc)})


@app.exception_handler(NotFoundError)
async def not_found_handler(request: Request, exc: NotFoundError):
    return JSONResponse(status_code=404, content={"detail": str(exc)})


@app.exception_handler(ConflictError)
async def conflict_handler(request: Request, exc: ConflictError):
    logger.info(f"{request.method} {request.url.path} rejected: {len(exc.conflicts)} conflict(s)")
    return JSONResponse(
        status_code=409,
        content={
            "detail": str(exc),
            "conflicts": [ConflictRead.model_validate(c).model_dump() for c in exc.conflicts],
        },
    )


@app.get("/health")
def health():
    return {"redis": redis_client.ping()}

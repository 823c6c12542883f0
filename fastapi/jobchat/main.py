import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from jobchat.core.config import get_settings
from jobchat.core.logging import configure_logging
from jobchat.database.connection import close_mongo_connection, connect_to_mongo
from jobchat.errors import InvalidParticipants, NotFound, PartialFanoutFailure, TransientIO
from jobchat.routers.conversations import router as conversations_router
from jobchat.utils.realtime_bus import close_bus


logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):

    settings = get_settings()
    configure_logging(settings.log_level, log_file=settings.log_file)
    await connect_to_mongo()
    try:
        yield
    finally:
        await close_bus()
        await close_mongo_connection()


app = FastAPI(title=get_settings().app_name, lifespan=lifespan)


app.include_router(conversations_router)


@app.exception_handler(NotFound)
async def not_found_handler(request: Request, exc: NotFound):
    return JSONResponse(status_code=404, content={"detail": str(exc)})


@app.exception_handler(InvalidParticipants)
async def invalid_participants_handler(request: Request, exc: InvalidParticipants):
    return JSONResponse(status_code=400, content={"detail": str(exc)})


@app.exception_handler(PartialFanoutFailure)
async def partial_fanout_handler(request: Request, exc: PartialFanoutFailure):
    # The client keeps the message as FAILED and offers a retry.
    message = exc.message.model_dump(mode="json") if exc.message is not None else None
    return JSONResponse(
        status_code=502,
        content={"detail": str(exc), "failed": sorted(exc.failed), "message": message},
    )


@app.exception_handler(TransientIO)
async def transient_io_handler(request: Request, exc: TransientIO):
    logger.warning("Store unavailable", extra={"path": request.url.path}, exc_info=exc)
    return JSONResponse(status_code=503, content={"detail": "Message store unavailable, retry later"})


@app.get("/")
async def root():

    return {"message": "ok", "service": get_settings().app_name}

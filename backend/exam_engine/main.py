import logging
import traceback

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from mangum import Mangum

from exam_engine.api.deps import get_registry
from exam_engine.api.v1 import router as api_v1_router
from exam_engine.core.config import settings
from exam_engine.core.database import init_db
from exam_engine.core.errors import EngineError, ErrorKind, ExecutionBusyError

logging.basicConfig(
    level=settings.LOG_LEVEL.upper(),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)

ERROR_STATUS = {
    ErrorKind.RATE_LIMITED: 429,
    ErrorKind.TIMEOUT: 504,
    ErrorKind.NETWORK_ERROR: 502,
    ErrorKind.VALIDATION_ERROR: 400,
}

app = FastAPI(title="Exam Session Engine")

app.add_middleware(
    CORSMiddleware,
    allow_origins=[
        "http://localhost:3000",
        "http://127.0.0.1:3000",
        "http://localhost:5173",
        "http://127.0.0.1:5173",
    ],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(EngineError)
async def engine_error_handler(request: Request, exc: EngineError):
    status_code = 409 if isinstance(exc, ExecutionBusyError) else ERROR_STATUS[exc.kind]
    logger.info(
        "Request failed on %s %s: %s",
        request.method,
        request.url.path,
        exc.message,
        extra={"kind": exc.kind.value},
    )
    return JSONResponse(
        status_code=status_code,
        content={"detail": exc.message, "kind": exc.kind.value},
    )


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    logger.error("Unhandled error on %s %s: %s", request.method, request.url.path, exc)
    logger.debug(traceback.format_exc())
    return JSONResponse(
        status_code=500,
        content={"detail": str(exc)},
    )


@app.on_event("startup")
async def on_startup() -> None:
    await init_db()


@app.on_event("shutdown")
async def on_shutdown() -> None:
    get_registry().close_all()


@app.get("/")
async def health_check() -> dict:
    return {"status": "ok", "version": "1.0"}


app.include_router(api_v1_router, prefix="/api/v1")

handler = Mangum(app)

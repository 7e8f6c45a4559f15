import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from app.core.config import settings
from app.api.v1.endpoints import user_context
from services.exceptions import (
    AlreadyExists,
    ConsentRequired,
    CorruptRecord,
    NotFound,
    PartialErasure,
    StorageUnavailable,
    UserContextError,
    ValidationError,
)
from services.user_context_service import create_user_context_service

logging.basicConfig(
    level=getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO),
    format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
)
logger = logging.getLogger(__name__)


# ============================================================
# LIFECYCLE
# ============================================================
@asynccontextmanager
async def lifespan(app: FastAPI):
    service = getattr(app.state, "user_context_service", None)
    owns_service = service is None
    if owns_service:
        service = create_user_context_service()
        await service.initialize()
        app.state.user_context_service = service

    logger.info("🚀 Application startup complete, record store initialized.")
    try:
        yield
    finally:
        if owns_service:
            await service.close()
            app.state.user_context_service = None


# ============================================================
# FASTAPI APP SETUP
# ============================================================
app = FastAPI(
    title=settings.PROJECT_NAME,
    description="""
    🧳 **Traveler Context API**

    Profiles, booking history, conversation context and learned preferences
    for personalized flight search.

    ## Features
    * 👤 Consent-aware traveler profiles
    * 📈 Preference learning from confirmed bookings
    * 💡 Personalized route, airline, class and budget suggestions
    * 🔒 Export and erasure of all user data
    """,
    version=settings.VERSION,
    docs_url="/docs",
    redoc_url="/redoc",
    openapi_url=f"{settings.API_V1_STR}/openapi.json",
    lifespan=lifespan,
)

# ============================================================
# CORS CONFIG
# ============================================================
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.BACKEND_CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# ============================================================
# ERROR MAPPING
# ============================================================
ERROR_STATUS = [
    (ValidationError, status.HTTP_422_UNPROCESSABLE_ENTITY),
    (AlreadyExists, status.HTTP_409_CONFLICT),
    (NotFound, status.HTTP_404_NOT_FOUND),
    (ConsentRequired, status.HTTP_403_FORBIDDEN),
    (StorageUnavailable, status.HTTP_503_SERVICE_UNAVAILABLE),
    (PartialErasure, status.HTTP_500_INTERNAL_SERVER_ERROR),
    (CorruptRecord, status.HTTP_500_INTERNAL_SERVER_ERROR),
]


@app.exception_handler(UserContextError)
async def user_context_error_handler(request: Request, exc: UserContextError):
    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
    for error_type, code in ERROR_STATUS:
        if isinstance(exc, error_type):
            status_code = code
            break

    if status_code >= 500:
        logger.error(f"{type(exc).__name__} on {request.method} {request.url.path}: {exc}")
    else:
        logger.info(f"{type(exc).__name__} on {request.method} {request.url.path}: {exc}")

    content = {"detail": str(exc), "error": type(exc).__name__}
    if isinstance(exc, PartialErasure):
        content["remaining"] = exc.remaining
    return JSONResponse(status_code=status_code, content=content)


# ============================================================
# API ROUTERS
# ============================================================
app.include_router(user_context.router, prefix=settings.API_V1_STR)


# ============================================================
# ROOT ENDPOINT
# ============================================================
@app.get("/")
def read_root():
    return {"message": f"Welcome to the {settings.PROJECT_NAME}"}

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from .cors import DynamicCORSMiddleware
from .database import Base, engine
from .domain.payments.router import router as payments_router
from .domain.webhooks.router import router as webhooks_router
from .rate_limiter import build_webhook_rate_limiter
from .security_events import SecurityEventLogger

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)

# Reduce verbosity of third-party libraries
logging.getLogger("httpx").setLevel(logging.WARNING)
logging.getLogger("httpcore").setLevel(logging.WARNING)


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info("Application starting up...")
    try:
        Base.metadata.create_all(bind=engine, checkfirst=True)
        logger.info("Database tables created successfully")
    except Exception as e:
        # Ignore "already exists" errors from race conditions between workers
        error_msg = str(e)
        if "already exists" in error_msg or "duplicate key" in error_msg:
            logger.info("Database tables already exist (created by another worker)")
        else:
            logger.error(f"Failed to create database tables: {e}")

    yield
    logger.info("Application shutting down...")


app = FastAPI(title="Boinvit Settlement API", version="1.0.0", lifespan=lifespan)


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    """
    Payment initiation answers bad bodies with 400 and the first problem,
    in the same {"success": false, "error": ...} shape as its other failures
    """
    errors = exc.errors()
    logger.warning(f"Validation error for {request.url.path}: {errors}")

    if request.url.path.startswith("/payments") and errors:
        first = errors[0]
        message = str(first.get("msg", "Invalid request"))
        if message.startswith("Value error, "):
            message = message[len("Value error, "):]
        else:
            field_name = next((str(part) for part in reversed(first.get("loc", ())) if part != "body"), None)
            if field_name:
                message = f"{field_name}: {message}"
        return JSONResponse(status_code=400, content={"success": False, "error": message})

    return JSONResponse(status_code=422, content={"detail": jsonable_encoder(errors)})

# Collaborators injected into the routes through app.state
app.state.webhook_rate_limiter = build_webhook_rate_limiter()
app.state.security_logger = SecurityEventLogger()

app.add_middleware(DynamicCORSMiddleware)

# Routes
app.include_router(webhooks_router)
app.include_router(payments_router)


@app.get("/")
def root():
    return {"message": "Boinvit Settlement API is running"}


@app.get("/health")
def health():
    return {"status": "healthy"}

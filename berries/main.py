"""
FastAPI main application entry point.
"""
import logging
from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from fastapi.middleware.cors import CORSMiddleware
from fastapi.staticfiles import StaticFiles
from berries.config import settings
from berries.routers import auth, chat, uploads

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)

app = FastAPI(
    title="8Berries Chat API",
    description="FastAPI backend for the 8Berries chat and chart assistant",
    version="1.0.0"
)

# CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins_list,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# Exception handler for 422 validation errors
@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    """Log 422 validation errors with the request path and error list."""
    logger.warning(
        f"422 Validation Error on {request.method} {request.url.path} "
        f"(content-type: {request.headers.get('content-type', 'missing')}): {exc.errors()}"
    )
    return JSONResponse(
        status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
        content={"detail": exc.errors()},
    )


# Include routers
app.include_router(auth.router, prefix="/api/v1", tags=["auth"])
app.include_router(chat.router, prefix="/api/v1", tags=["chat"])
app.include_router(uploads.router, prefix="/api/v1", tags=["uploads"])

# Stored uploads are served back as static files
app.mount("/uploads", StaticFiles(directory=settings.upload_dir, check_dir=False), name="uploads")


@app.on_event("startup")
async def startup_event():
    """Log configuration on startup and initialize database."""
    logger.info("=" * 60)
    logger.info("Starting 8Berries Chat API")
    logger.info("=" * 60)
    logger.info(f"Completion provider: {settings.llm_base_url}")
    logger.info(f"Model: {settings.llm_model}")
    logger.info(f"API key loaded: {bool(settings.groq_api_key)}")
    logger.info(f"API running on: http://{settings.api_host}:{settings.api_port}")
    logger.info("=" * 60)

    # Initialize database tables
    from berries.database import init_db
    init_db()
    logger.info("Database initialized successfully")
    logger.info("=" * 60)


@app.get("/")
async def root():
    """Health check endpoint."""
    return {
        "message": "8Berries Chat API is running",
        "status": "ok",
        "model": settings.llm_model,
    }


@app.get("/health")
async def health():
    """Health check endpoint."""
    return {"status": "healthy"}

import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from sqlalchemy.orm import sessionmaker

from .config import LOG_LEVEL, SyncSettings
from .database import SessionLocal, get_db, init_db
from .domain.appointments.router import router as appointments_router
from .domain.day_notes.router import router as day_notes_router
from .domain.patients.router import router as patients_router
from .routes.sync import router as sync_router
from .services.calendar_service import GoogleCalendarClient
from .services.google_auth import GoogleAuthProvider
from .services.sheets_service import GoogleSheetsClient
from .services.sync_orchestrator import SyncOrchestrator

# Configure logging
logging.basicConfig(
    level=getattr(logging, LOG_LEVEL.upper(), logging.INFO),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)

# Reduce verbosity of third-party libraries
logging.getLogger("httpx").setLevel(logging.WARNING)
logging.getLogger("httpcore").setLevel(logging.WARNING)


def create_app(
    settings: Optional[SyncSettings] = None,
    session_factory: Optional[sessionmaker] = None,
    orchestrator: Optional[SyncOrchestrator] = None,
    start_sync: bool = True,
) -> FastAPI:
    """
    Build the API with its sync orchestrator.

    Tests pass their own session factory and orchestrator; by default the
    configured store and Google clients are used.
    """
    settings = settings or (orchestrator.settings if orchestrator else SyncSettings())
    session_factory = session_factory or (orchestrator.session_factory if orchestrator else SessionLocal)

    if orchestrator is None:
        auth = GoogleAuthProvider()
        orchestrator = SyncOrchestrator(
            session_factory,
            auth,
            GoogleSheetsClient(auth),
            GoogleCalendarClient(auth),
            settings,
        )

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logger.info("Application starting up...")
        try:
            init_db(session_factory.kw["bind"])
            logger.info("Database tables created successfully")
        except Exception as e:
            logger.error(f"Failed to create database tables: {e}")
            raise

        if start_sync:
            await orchestrator.start()
        yield

        logger.info("Application shutting down...")
        await orchestrator.stop()

    app = FastAPI(title="PT Scheduler Sync API", version="1.0.0", lifespan=lifespan)
    app.state.settings = settings
    app.state.orchestrator = orchestrator

    def get_scoped_db():
        db = session_factory()
        try:
            yield db
        finally:
            db.close()

    app.dependency_overrides[get_db] = get_scoped_db

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(request: Request, exc: RequestValidationError):
        logger.warning(f"Validation error for {request.url.path}: {exc.errors()}")
        return JSONResponse(status_code=422, content={"detail": jsonable_encoder(exc.errors())})

    @app.middleware("http")
    async def log_requests(request: Request, call_next):
        try:
            return await call_next(request)
        except Exception as e:
            logger.error(f"{request.method} {request.url.path} - Error: {str(e)}")
            raise

    app.include_router(patients_router)
    app.include_router(appointments_router)
    app.include_router(day_notes_router)
    app.include_router(sync_router)

    @app.get("/")
    def root():
        return {"message": "PT Scheduler Sync API is running"}

    @app.get("/health")
    def health():
        return {"status": "healthy"}

    return app


app = create_app()

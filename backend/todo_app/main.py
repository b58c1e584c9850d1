"""Todo App - authentication and session API."""
from contextlib import asynccontextmanager
import logging

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from todo_app.config import get_settings

settings = get_settings()

logging.basicConfig(
    level=settings.log_level.upper(),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan events."""
    from todo_app.database import Base, engine

    # Import all models so they're registered with Base
    from todo_app import models  # noqa: F401

    Base.metadata.create_all(bind=engine)
    logger.info("%s started", settings.app_name)

    yield


app = FastAPI(
    title=settings.app_name,
    description="Accounts, sessions and refresh-token rotation for the Todo app",
    version="0.1.0",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origin_list,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.get("/health")
async def health_check():
    """Health check endpoint."""
    return {"status": "healthy", "app": settings.app_name}


# Import and include routers
from todo_app.api import auth, sessions  # noqa: E402

for auth_router in auth.routers:
    app.include_router(auth_router, prefix="/api")
app.include_router(sessions.router, prefix="/api")

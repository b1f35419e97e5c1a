from fastapi import FastAPI, Depends
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from slowapi.errors import RateLimitExceeded
from starlette.exceptions import HTTPException as StarletteHTTPException
from eduhub.config import settings
from eduhub.routers import doubts, notifications, websocket
from eduhub.db import SessionLocal, get_db
from eduhub.models import User, Role, School, Topic
from eduhub.auth import get_password_hash
from sqlalchemy.orm import Session

# Import error handling and rate limiting
from eduhub.exceptions import (
    AppException,
    app_exception_handler,
    http_exception_handler,
    general_exception_handler,
    validation_exception_handler
)
from eduhub.rate_limit import limiter, rate_limit_exceeded_handler
from eduhub.services.ai_responder import SimulatedResponder
from eduhub.services.message_relay import MessageRelay
from eduhub.services.scheduler import ThreadTimerScheduler
from eduhub.websocket.manager import ConnectionManager

import asyncio
import os
import logging
import redis
import sentry_sdk
from sentry_sdk.integrations.fastapi import FastApiIntegration
from sentry_sdk.integrations.sqlalchemy import SqlalchemyIntegration
from alembic import command
from alembic.config import Config
from sqlalchemy import text

from eduhub.middleware.request_id import RequestIDMiddleware
from eduhub.utils.logging import configure_logging

configure_logging(logging.INFO)
logger = logging.getLogger(__name__)

# Only initialize error tracking if DSN is provided
if settings.SENTRY_DSN:
    sentry_sdk.init(
        dsn=settings.SENTRY_DSN,
        integrations=[
            FastApiIntegration(),
            SqlalchemyIntegration(),
        ],
        traces_sample_rate=0.1,
        environment=settings.ENVIRONMENT,
    )
    logger.info("Sentry error tracking initialized")


def run_migrations():
    """Run Alembic migrations on startup"""
    try:
        logger.info("Running DB migrations...")

        # backend/eduhub/main.py -> backend/
        current_dir = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
        alembic_cfg = Config(os.path.join(current_dir, "alembic.ini"))
        alembic_cfg.set_main_option("script_location", os.path.join(current_dir, "alembic"))
        alembic_cfg.set_main_option("sqlalchemy.url", settings.database_url_fixed)

        command.upgrade(alembic_cfg, "head")
        logger.info("DB migrations completed successfully")
    except Exception as e:
        logger.error(f"Failed to run DB migrations: {e}")


SEED_PASSWORD = "Admin@123"
DEMO_SCHOOL = "Greenwood High"

# Demo directory seeded when SEED_DEMO_DATA is set. Password for all: Admin@123
DEMO_USERS = [
    (Role.ADMIN, "admin@eduhub.dev", "Admin User", {}),
    (Role.TRAINER, "trainer@eduhub.dev", "Priya Trainer", {
        "subject": "Mathematics",
        "assigned_schools": [DEMO_SCHOOL],
        "assigned_grades": [8, 9, 10],
    }),
    (Role.STUDENT, "student@eduhub.dev", "Arjun Student", {"school": DEMO_SCHOOL, "grade": 9}),
]

DEMO_TOPICS = [
    (9, "Algebra", "Linear equations"),
    (9, "Geometry", "Triangles"),
    (10, "Trigonometry", "Heights and distances"),
]


def seed_demo_data(db):
    """Create the demo school, users and topics; existing rows are left alone."""
    if not db.query(School).filter(School.school_name == DEMO_SCHOOL).first():
        db.add(School(school_name=DEMO_SCHOOL))
        logger.info(f"Demo school created: {DEMO_SCHOOL}")

    for role, email, name, profile in DEMO_USERS:
        if db.query(User).filter(User.email == email).first():
            continue
        db.add(User(
            name=name,
            email=email,
            password_hash=get_password_hash(SEED_PASSWORD),
            role=role,
            is_active=True,
            **profile
        ))
        logger.info(f"Demo user created: {email} ({role.value})")

    for grade, name, topic_name in DEMO_TOPICS:
        exists = db.query(Topic).filter(Topic.grade == grade, Topic.name == name).first()
        if not exists:
            db.add(Topic(grade=grade, name=name, topic_name=topic_name))

    db.commit()


def build_realtime(app: FastAPI) -> None:
    """Wire the socket rooms, relay and AI responder onto app.state."""
    manager = ConnectionManager()
    relay = MessageRelay(manager)
    app.state.connection_manager = manager
    app.state.relay = relay
    app.state.session_factory = SessionLocal
    app.state.responder = SimulatedResponder(relay, ThreadTimerScheduler(), session_factory=SessionLocal)


# Create FastAPI app
app = FastAPI(
    title="EduHub Doubt Sessions",
    description="Student doubt sessions with trainers and an AI assistant, with live chat",
    version="1.0.0"
)

# Add rate limiting state
app.state.limiter = limiter
build_realtime(app)

# Register exception handlers
app.add_exception_handler(AppException, app_exception_handler)
app.add_exception_handler(StarletteHTTPException, http_exception_handler)
app.add_exception_handler(RequestValidationError, validation_exception_handler)
app.add_exception_handler(Exception, general_exception_handler)
app.add_exception_handler(RateLimitExceeded, rate_limit_exceeded_handler)

allowed_origins = settings.cors_origins_list
if settings.FRONTEND_URL and settings.FRONTEND_URL not in allowed_origins:
    allowed_origins.append(settings.FRONTEND_URL)

app.add_middleware(
    CORSMiddleware,
    allow_origins=allowed_origins,
    allow_origin_regex=settings.CORS_ORIGIN_REGEX,
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"],
    allow_headers=["*"],
    expose_headers=["*"],
    max_age=3600,
)

app.add_middleware(RequestIDMiddleware)


# Startup event
@app.on_event("startup")
async def startup_event():
    """Initialize application on startup"""
    logger.info("Starting EduHub doubt service...")
    app.state.connection_manager.bind_loop(asyncio.get_running_loop())

    if settings.RUN_MIGRATIONS:
        run_migrations()

    if settings.SEED_DEMO_DATA:
        db = SessionLocal()
        try:
            seed_demo_data(db)
            logger.info("Demo data seeded")
        except Exception as e:
            db.rollback()
            logger.error(f"Failed to seed demo data: {e}")
        finally:
            db.close()


@app.on_event("shutdown")
async def shutdown_event():
    """Drop scheduled AI answers; nothing queued survives a restart."""
    cancelled = app.state.responder.scheduler.shutdown()
    logger.info(f"Shutting down; cancelled {cancelled} scheduled AI answers")


# Register routers
app.include_router(doubts.router)
app.include_router(notifications.router)
app.include_router(websocket.router)


@app.get("/")
def read_root():
    """Root endpoint"""
    return {
        "message": "EduHub Doubt Sessions API",
        "version": "1.0.0",
        "status": "running"
    }


@app.get("/health")
def health_check(db: Session = Depends(get_db)):
    """Health check with dependency verification"""
    health_status = {"status": "ok", "checks": {}}

    try:
        db.execute(text("SELECT 1"))
        health_status["checks"]["database"] = "ok"
    except Exception as e:
        health_status["checks"]["database"] = "error"
        health_status["status"] = "degraded"
        logger.error(f"Database health check failed: {e}")

    # Redis backs the rate limiter when configured
    if settings.REDIS_URL:
        try:
            redis.Redis.from_url(settings.REDIS_URL, socket_connect_timeout=2).ping()
            health_status["checks"]["redis"] = "ok"
        except redis.RedisError as e:
            health_status["checks"]["redis"] = "error"
            health_status["status"] = "degraded"
            logger.error(f"Redis health check failed: {e}")
    else:
        health_status["checks"]["redis"] = "not_configured"

    manager = app.state.connection_manager
    health_status["checks"]["websocket_connections"] = manager.get_connection_count()
    return health_status

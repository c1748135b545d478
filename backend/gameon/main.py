import logging
import os
import subprocess
from datetime import datetime

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy.exc import SQLAlchemyError

from gameon.database import init_db
from gameon.routes import admin_room_slots, room_slots, tournaments
from gameon.services.room_errors import ValidationError
from gameon.services.room_slot_service import get_room_slot_service
from gameon.services.room_views import present_admin_error, present_participant_error

logging.basicConfig(
    level=os.getenv("LOG_LEVEL", "INFO").upper(),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)

app = FastAPI(title="GameOn Room Slots API")


# Get build info
def get_build_info():
    """Get git commit hash or build timestamp"""
    try:
        result = subprocess.run(
            ["git", "rev-parse", "--short", "HEAD"],
            cwd=os.path.dirname(os.path.dirname(__file__)),
            capture_output=True,
            text=True,
            timeout=2,
        )
        if result.returncode == 0:
            return result.stdout.strip()
    except (OSError, subprocess.SubprocessError):
        pass

    # Fallback to build timestamp
    return datetime.now().strftime("%Y%m%d-%H%M%S")


BUILD_HASH = get_build_info()

_cors_origins = [
    "http://localhost:3000",
    "http://127.0.0.1:3000",
]
_extra = os.getenv("CORS_ORIGINS", "")
if _extra:
    _cors_origins.extend(o.strip() for o in _extra.split(",") if o.strip())

app.add_middleware(
    CORSMiddleware,
    allow_origins=_cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Include routers
app.include_router(tournaments.router, prefix="/api", tags=["tournaments"])
app.include_router(room_slots.router, prefix="/api", tags=["room-slots"])
app.include_router(admin_room_slots.router, prefix="/api", tags=["admin-room-slots"])


@app.exception_handler(SQLAlchemyError)
async def database_error_handler(request: Request, exc: SQLAlchemyError):
    logger.exception("Database error on %s %s", request.method, request.url.path)
    return JSONResponse(
        status_code=503,
        content={"detail": {"kind": "Unavailable", "message": "Service temporarily unavailable, try again"}},
    )


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError):
    """Malformed bodies and parameters get the same kind/message shape as domain errors."""
    errors = exc.errors()
    first = errors[0] if errors else {}
    field = ".".join(str(part) for part in first.get("loc", ()) if part not in ("body", "query", "path"))
    error = ValidationError(first.get("msg", "Invalid request"), field=field or None)
    if request.url.path.startswith("/api/room-slots/"):
        detail = present_participant_error(error)
    else:
        detail = present_admin_error(error)
    return JSONResponse(status_code=422, content={"detail": detail})


@app.on_event("startup")
def on_startup():
    init_db()
    get_room_slot_service().resume_schedules()


@app.on_event("shutdown")
def on_shutdown():
    get_room_slot_service().shutdown()


@app.get("/api/health")
def health_check():
    """Diagnostic endpoint to verify which code is running"""
    return {"app_name": "GameOn Room Slots API", "build_hash": BUILD_HASH, "status": "healthy"}

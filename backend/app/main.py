"""InfraDeck - Infrastructure Dashboard Backend (credential vault and Proxmox control)."""

import logging
import os
import tomllib
from contextlib import asynccontextmanager
from pathlib import Path

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from app.config import get_config
from app.db import init_db
from app.services.scheduler import sync_scheduler
from app.utils.encryption import get_envelope_cipher
from app.utils.security import sanitize_log_message


def get_version() -> str:
    """Read version from pyproject.toml (single source of truth)."""
    try:
        # pyproject.toml sits at the repository root, two levels above app/
        pyproject_path = Path(__file__).resolve().parent.parent.parent / "pyproject.toml"
        if not pyproject_path.exists():
            logger.warning(f"pyproject.toml not found at {pyproject_path}")
            return "0.0.0-dev"

        with open(pyproject_path, "rb") as f:
            data = tomllib.load(f)
        return data["project"]["version"]
    except (FileNotFoundError, KeyError) as e:
        logger.warning(f"Could not read version from pyproject.toml: {e}")
        return "0.0.0-dev"


# Configure logging
logging.basicConfig(
    level=os.getenv("LOG_LEVEL", "INFO"),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan: startup and shutdown."""
    logger.info("Starting InfraDeck...")

    # A missing master passphrase is fatal at startup, not per request
    get_config()
    get_envelope_cipher()
    logger.info("Encryption key loaded")

    await init_db()
    logger.info("Database initialized")

    await sync_scheduler.start()

    yield

    await sync_scheduler.stop()
    logger.info("Shutting down InfraDeck...")


# Create FastAPI app
app = FastAPI(
    title="InfraDeck",
    description="Credential vault and Proxmox control-plane engine for the infrastructure dashboard",
    version=get_version(),
    lifespan=lifespan,
)

DASHBOARD_DEV_ORIGINS = [
    "http://localhost:5173",
    "http://localhost:8080",
    "http://127.0.0.1:5173",
    "http://127.0.0.1:8080",
]


def parse_cors_origins(raw: str | None) -> list[str]:
    """Allowed origins from a comma-separated CORS_ORIGINS value."""
    if not raw:
        return DASHBOARD_DEV_ORIGINS
    if raw.strip() == "*":
        logger.warning("CORS allows any origin (*); credentials are disabled")
        return ["*"]
    origins = [origin.strip() for origin in raw.split(",") if origin.strip()]
    logger.info(f"CORS origins: {origins}")
    return origins


cors_origins = parse_cors_origins(os.getenv("CORS_ORIGINS"))

app.add_middleware(
    CORSMiddleware,
    allow_origins=cors_origins,
    # Cannot use allow_credentials=True with allow_origins=["*"]
    allow_credentials=cors_origins != ["*"],
    allow_methods=["GET", "POST", "PUT", "DELETE", "OPTIONS"],
    allow_headers=["Content-Type", "Authorization", "Accept"],
)


@app.exception_handler(Exception)
async def generic_exception_handler(request: Request, exc: Exception):
    """Return a generic 500 unless INFRADECK_DEBUG is on."""
    logger.error(
        f"Unhandled {type(exc).__name__} on {request.method} {sanitize_log_message(request.url.path)}: "
        f"{sanitize_log_message(str(exc))}",
        exc_info=True,
    )

    if get_config().debug:
        return JSONResponse(
            status_code=500,
            content={"detail": str(exc), "type": type(exc).__name__, "debug": True},
        )

    return JSONResponse(
        status_code=500,
        content={"detail": "Internal server error"},
    )


@app.get("/health")
async def health_check():
    return {"status": "healthy", "service": "infradeck"}


# API routes
from app.routes import api_router  # noqa: E402

app.include_router(api_router)


if __name__ == "__main__":
    import subprocess
    import sys

    # Use same server as production (Granian) for consistency
    cmd = [
        "granian",
        "--interface",
        "asgi",
        "--host",
        "0.0.0.0",
        "--port",
        "8788",
        "--reload",
        "app.main:app",
    ]

    sys.exit(subprocess.run(cmd).returncode)

"""codegrant - OAuth2 authorization code flow service."""

import logging
import tomllib
from contextlib import asynccontextmanager
from pathlib import Path

from fastapi import FastAPI
from starlette.middleware.sessions import SessionMiddleware

from codegrant.config import (
    allow_insecure_endpoints,
    get_default_provider,
    get_log_level,
    get_session_secret,
    load_provider_configs,
    session_https_only,
)
from codegrant.db import init_db
from codegrant.routes import oauth2
from codegrant.services.registry import ClientRegistry

# Configure logging
logging.basicConfig(
    level=get_log_level(),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)

SESSION_COOKIE_NAME = "codegrant_session"
SESSION_MAX_AGE = 15 * 60  # authorize and callback legs must complete within 15 minutes
DEV_PORT = 8788


def get_version() -> str:
    """Read version from pyproject.toml (single source of truth)."""
    pyproject_path = Path(__file__).resolve().parent.parent / "pyproject.toml"
    try:
        with open(pyproject_path, "rb") as f:
            data = tomllib.load(f)
        return data["project"]["version"]
    except (FileNotFoundError, KeyError) as e:
        logger.warning(f"Could not read version from pyproject.toml: {e}")
        return "0.0.0-dev"


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan: startup and shutdown."""
    logger.info("Starting codegrant...")

    await init_db()
    logger.info("Database initialized")

    # Populated once; read-only for the rest of the process lifetime
    app.state.registry = ClientRegistry.from_configs(
        load_provider_configs(),
        allow_insecure=allow_insecure_endpoints(),
    )
    app.state.default_provider = get_default_provider()
    if len(app.state.registry) == 0:
        logger.warning("No OAuth2 providers configured - every login will be rejected")
    else:
        logger.info("OAuth2 providers: %s", ", ".join(app.state.registry.names()))

    yield

    logger.info("Shutting down codegrant...")


app = FastAPI(
    title="codegrant",
    description="OAuth2 Authorization Code Grant flow with short-lived credential cookies",
    version=get_version(),
    lifespan=lifespan,
)

# Signed cookie session carrying the CSRF binding between authorize and callback
app.add_middleware(
    SessionMiddleware,
    secret_key=get_session_secret(),
    session_cookie=SESSION_COOKIE_NAME,
    max_age=SESSION_MAX_AGE,
    same_site="lax",
    https_only=session_https_only(),
)

app.include_router(oauth2.router)


@app.get("/health")
async def health_check():
    """Health check endpoint."""
    return {"status": "healthy"}


def server_command(host: str = "0.0.0.0", port: int = DEV_PORT, reload: bool = True) -> list[str]:
    """Granian command line serving this app."""
    cmd = ["granian", "--interface", "asgi", "--host", host, "--port", str(port)]
    if reload:
        cmd.append("--reload")
    cmd.append("codegrant.main:app")
    return cmd


if __name__ == "__main__":
    import subprocess
    import sys

    # Use same server as production (Granian) for consistency
    sys.exit(subprocess.run(server_command()).returncode)

import logging
import os
import sys
from contextlib import asynccontextmanager
from importlib.metadata import metadata

import gconf
from fastapi import FastAPI, Request, status
from fastapi.responses import JSONResponse

from .db.database import init_token_store, shutdown_token_store
from .service.exceptions import StorageUnavailable
from .service.rate_limit import FixedWindowRateLimiter
from .service.redemption import RedemptionCoordinator
from .util.misc import format_error
from .web import public, management

log = logging.getLogger(__name__)


def create_app():
    gconf.set_env_prefix("ACCESS")
    # Only load config if not already loaded (e.g., by test fixtures)
    try:
        gconf.get("db")
        log.debug("Config already loaded, skipping config file load")
    except KeyError:
        if "CONFIG" in os.environ:
            for c in os.environ["CONFIG"].split(","):
                gconf.load(c)
        else:
            gconf.load("config.yml")
    configure_logging()

    app_meta = metadata("access_core")
    app = FastAPI(
        title="Access Core",
        description=app_meta["summary"],
        version=app_meta["version"],
        redoc_url="/redoc",
        lifespan=lifespan,
    )
    app.state.rate_limiter = FixedWindowRateLimiter.from_config()
    app.include_router(public.router)
    app.include_router(management.router)
    app.add_exception_handler(StorageUnavailable, storage_unavailable_handler)

    return app


def configure_logging():
    logging.basicConfig(
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        handlers=[logging.StreamHandler(sys.stdout)],
    )
    for module, level in gconf.get("log.levels").items():  # type: str, str
        logger = logging.getLogger() if module == "root" else logging.getLogger(module)
        logger.setLevel(getattr(logging, level.upper()))
        log.info(f"set logger for {module} to {level.upper()}")


@asynccontextmanager
async def lifespan(app: FastAPI):
    store = await init_token_store()
    app.state.coordinator = RedemptionCoordinator(store)

    log.info("Startup complete")
    yield  # === run app ===
    log.info("Shutting down")

    await shutdown_token_store(store)


async def storage_unavailable_handler(_: Request, e: StorageUnavailable):
    log.error(f"request failed, {format_error(e)}")
    return JSONResponse(
        status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
        content={"detail": "Token storage is unavailable. Please try again later."},
    )

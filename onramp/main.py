#!/usr/bin/env python
import logging
import sys
from contextlib import asynccontextmanager
from typing import Optional

import uvicorn
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from loguru import logger

from onramp.config import Settings
from onramp.exceptions import OnrampError
from onramp.handlers import account_handler, lending_handler, payment_handler, settlement_handler
from onramp.services import Services, build_services


def setup_logging(level: str = "INFO"):
    """Configure structured logging with loguru."""
    logger.remove()  # Remove default handler
    logger.add(
        "logs/onramp_{time}.log",
        rotation="1 day",
        retention="14 days",
        level=level,
        format="{time:YYYY-MM-DD HH:mm:ss} | {level} | {message} | {extra}",
        serialize=True,  # JSON formatting for structured logs
    )

    # Also send logs to stdout
    logger.add(
        sys.stdout,
        level=level,
        format="{time:YYYY-MM-DD HH:mm:ss} | {level} | {message}"
    )

    # Redirect uvicorn and stripe loggers to loguru
    logging.basicConfig(handlers=[InterceptHandler()], level=0, force=True)
    for name in ("uvicorn", "uvicorn.access", "uvicorn.error", "stripe"):
        logging.getLogger(name).handlers = [InterceptHandler()]
        logging.getLogger(name).propagate = False


class InterceptHandler(logging.Handler):
    """Intercept standard logging and redirect to loguru."""
    def emit(self, record):
        try:
            level = logger.level(record.levelname).name
        except ValueError:
            level = record.levelno

        frame, depth = logging.currentframe(), 2
        while frame.f_code.co_filename == logging.__file__:
            frame = frame.f_back
            depth += 1

        logger.opt(depth=depth, exception=record.exc_info).log(
            level, record.getMessage()
        )


async def onramp_error_handler(request: Request, exc: OnrampError):
    log = logger.warning if exc.status_code < 500 else logger.error
    log(
        f"{request.method} {request.url.path} failed: {exc.message}",
        extra={"status_code": exc.status_code, "error_type": type(exc).__name__}
    )
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


async def validation_exception_handler(request: Request, exc: RequestValidationError):
    errors = exc.errors()
    logger.warning(f"Validation error on {request.url.path}: {errors}")
    message = errors[0].get("msg", "Validation Error") if errors else "Validation Error"
    return JSONResponse(status_code=400, content={"status": "error", "error": message})


async def global_exception_handler(request: Request, exc: Exception):
    logger.opt(exception=exc).error(f"Unhandled error on {request.method} {request.url.path}: {str(exc)}")
    return JSONResponse(status_code=500, content={"status": "error", "error": "Internal error"})


def create_app(services: Optional[Services] = None, settings: Optional[Settings] = None) -> FastAPI:
    """
    Create the HTTP application.

    Args:
        services: Pre-built services (tests pass fakes here)
        settings: Configuration used to build services when none are given

    Returns:
        The FastAPI application
    """
    if services is None:
        services = build_services(settings or Settings.from_env())

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logger.info("Starting Solana onramp backend")
        yield
        await services.close()
        logger.info("Solana onramp backend stopped")

    app = FastAPI(title="Solana Onramp", lifespan=lifespan)
    app.state.services = services

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.add_exception_handler(OnrampError, onramp_error_handler)
    app.add_exception_handler(RequestValidationError, validation_exception_handler)
    app.add_exception_handler(Exception, global_exception_handler)

    app.include_router(account_handler.router)
    app.include_router(payment_handler.router)
    app.include_router(settlement_handler.router)
    app.include_router(lending_handler.router)

    return app


def main():
    """Build the application from the environment and serve it."""
    settings = Settings.from_env()
    setup_logging(settings.log_level)

    logger.info(f"Backend running on port {settings.port}")
    uvicorn.run(create_app(settings=settings), host="0.0.0.0", port=settings.port, log_config=None)


if __name__ == '__main__':
    main()

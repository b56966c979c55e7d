import logging

import asyncpg
import httpx
from loguru import logger

from attestgate.core.config import env

# Remove existing handlers
for handler in logging.root.handlers[:]:
    logging.root.removeHandler(handler)


class InterceptHandler(logging.Handler):
    def emit(self, record):
        # Get corresponding Loguru level
        try:
            level = logger.level(record.levelname).name
        except ValueError:
            level = record.levelno

        # Find caller to get correct stack depth
        frame, depth = logging.currentframe(), 2
        while frame.f_back and frame.f_code.co_filename == logging.__file__:
            frame = frame.f_back
            depth += 1

        logger.opt(depth=depth, exception=record.exc_info).log(
            level, record.getMessage()
        )


def setup_logger():
    loggers = (
        "asyncio",
        "asyncpg",
        "fastapi",
        "google.auth",
        "httpx",
        "prometheus_client",
        "sentry_sdk",
        "uvicorn",
        "uvicorn.access",
        "uvicorn.asgi",
        "uvicorn.lifespan",
        "uvicorn.server",
        "uvicorn.protocols.http",
        "uvicorn.error",
    )

    for logger_name in loggers:
        logging_logger = logging.getLogger(logger_name)
        logging_logger.handlers = []
        logging_logger.propagate = True

    logging.basicConfig(
        handlers=[InterceptHandler()],
        level=getattr(logging, env.LOG_LEVEL.upper(), logging.INFO),
    )
    _enable_httpx_logging()
    _enable_asyncpg_logging()
    if env.LOG_FILE:
        logger.add(
            env.LOG_FILE,
            rotation=env.LOG_ROTATION,
            compression=env.LOG_COMPRESSION,
            level=env.LOG_LEVEL,
            backtrace=True,
            # Local variables may hold raw attestation evidence
            diagnose=False,
        )


def _truncate(value, limit=200):
    if value is None:
        return None
    text = str(value)
    return text if len(text) <= limit else f"{text[: limit - 3]}..."


def _enable_httpx_logging():
    if not env.HTTPX_LOGGING:
        return

    original_post = httpx.AsyncClient.post
    if getattr(original_post, "__attestgate_httpx_logging__", False):
        return

    async def _post_wrapper(self, *args, **kwargs):
        url = args[0] if args else kwargs.get("url")
        # Request bodies carry integrity tokens, only the URL is logged
        logger.debug(f"HTTPX POST request -> {_truncate(url)}")
        try:
            response = await original_post(self, *args, **kwargs)
        except Exception:
            logger.error(f"HTTPX POST request failed for {_truncate(url)}")
            raise
        logger.debug(
            f"HTTPX POST response <- {_truncate(url)} status={response.status_code}"
        )
        return response

    _post_wrapper.__attestgate_httpx_logging__ = True
    httpx.AsyncClient.post = _post_wrapper


def _enable_asyncpg_logging():
    if not env.ASYNCPG_LOGGING:
        return

    original_execute = asyncpg.connection.Connection.execute
    if getattr(original_execute, "__attestgate_asyncpg_logging__", False):
        return

    async def _execute_wrapper(self, query, *args, **kwargs):
        logger.debug(f"ASYNCPG execute -> {_truncate(query)}")
        try:
            result = await original_execute(self, query, *args, **kwargs)
        except Exception:
            logger.error(f"ASYNCPG execute failed -> {_truncate(query)}")
            raise
        logger.debug(f"ASYNCPG execute <- {result=}")
        return result

    _execute_wrapper.__attestgate_asyncpg_logging__ = True
    asyncpg.connection.Connection.execute = _execute_wrapper

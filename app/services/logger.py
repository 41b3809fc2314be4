"""Centralized logging service using loguru."""

import logging
import sys
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Optional

from loguru import logger

from app.config import settings

# Remove default handler
logger.remove()

# Console handler with color
logger.add(
    sys.stderr,
    format="<green>{time:YYYY-MM-DD HH:mm:ss}</green> | <level>{level: <8}</level> | <cyan>{name}</cyan>:<cyan>{function}</cyan>:<cyan>{line}</cyan> - <level>{message}</level>",
    level=settings.app_log_level.upper(),
    colorize=True,
)

if settings.log_to_file:
    LOG_DIR = Path(settings.log_dir)
    LOG_DIR.mkdir(parents=True, exist_ok=True)
    logger.add(
        LOG_DIR / "aggregation_{time:YYYY-MM-DD}.log",
        format="{time:YYYY-MM-DD HH:mm:ss} | {level: <8} | {name}:{function}:{line} - {message}",
        level="DEBUG",
        rotation="00:00",
        retention="7 days",
        compression="zip",
    )

# Reduce noise from framework/network libraries
for logger_name in (
    "uvicorn",
    "uvicorn.error",
    "uvicorn.access",
    "fastapi",
    "httpx",
    "httpcore",
    "anthropic",
    "anthropic._base_client",
    "openai._base_client",
    "asyncpg",
    "asyncio",
):
    logging.getLogger(logger_name).setLevel(settings.noisy_log_level.upper())


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def log_research_call(
    provider: str,
    model: str,
    metric_code: str,
    input_tokens: int = 0,
    output_tokens: int = 0,
    duration_ms: int = 0,
    stop_reason: Optional[str] = None,
    error: Optional[str] = None,
) -> None:
    """One upstream web-research call, successful or not."""
    call_data = {
        "timestamp": _now_iso(),
        "provider": provider,
        "model": model,
        "metric": metric_code,
        "tokens": {"input": input_tokens, "output": output_tokens},
        "duration_ms": duration_ms,
        "stop_reason": stop_reason,
    }
    if error:
        call_data["error"] = error
        logger.warning(f"RESEARCH_CALL_FAILED: {call_data}")
    else:
        logger.info(f"RESEARCH_CALL: {call_data}")


def log_job_step(job_id: str, level: str, message: str) -> None:
    """Mirror a job log entry to the application log."""
    logger.log(level.upper(), f"[Job {job_id[-6:]}] {message}")


def log_store_write(
    table: str,
    action: str,
    key: Optional[str] = None,
    error: Optional[str] = None,
) -> None:
    if error:
        logger.error(f"STORE_WRITE_FAILED: {table}.{action} key={key} error={error}")
    else:
        logger.debug(f"STORE_WRITE: {table}.{action} key={key}")


def log_event(event_type: str, message: str, **fields: Any) -> None:
    """Lifecycle events (startup, job created) with structured context."""
    event_data = {"timestamp": _now_iso(), "event_type": event_type, "message": message, **fields}
    logger.info(f"EVENT: {event_data}")

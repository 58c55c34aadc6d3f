"""
Telemetry and logging setup for the role memory subsystem.

Trigger passes and cleanups are logged as structured JSON steps through
structlog; everything else goes through stdlib logging.
"""

import logging
import sys
import uuid
from typing import Any, Dict, Optional

import structlog


structlog.configure(
    processors=[
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.JSONRenderer(ensure_ascii=False),
    ],
    context_class=dict,
    logger_factory=structlog.stdlib.LoggerFactory(),
    cache_logger_on_first_use=True,
)

logger = structlog.get_logger("role_memory.telemetry")


def setup_logging(level: str = "INFO") -> None:
    """
    Configure stdlib logging for CLI and API entry points.

    Args:
        level: Log level name (DEBUG, INFO, WARNING, ...)
    """
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        handlers=[logging.StreamHandler(sys.stdout)],
    )


def new_run_id() -> str:
    """Generate a new unique run ID."""
    return str(uuid.uuid4())


def log_step(
    run_id: str,
    step_name: str,
    ms: float,
    extra: Optional[Dict[str, Any]] = None,
) -> None:
    """
    Log one memory pipeline step with timing.

    Args:
        run_id: Unique run identifier
        step_name: Name of the step (e.g., "trigger", "cleanup")
        ms: Duration in milliseconds
        extra: Optional extra fields to log
    """
    log_data = {
        "run_id": run_id,
        "step": step_name,
        "duration_ms": round(ms, 3),
        **(extra or {}),
    }
    logger.info("step_executed", **log_data)

"""Observability module for logging."""

from .logging_config import (
    add_context,
    clear_context,
    configure_from_env,
    get_logger,
    setup_logging,
)

__all__ = [
    "setup_logging",
    "configure_from_env",
    "get_logger",
    "add_context",
    "clear_context",
]

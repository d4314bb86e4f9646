"""
PawScript Observability Module

Structured logging for the analytics engine.
"""

from pawscript.observability.logging import configure_logging, get_logger

__all__ = [
    "configure_logging",
    "get_logger",
]

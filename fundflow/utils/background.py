"""Dispatch of fire-and-forget side calls."""
from __future__ import annotations

import logging
from typing import Any, Callable

from fastapi import BackgroundTasks

logger = logging.getLogger(__name__)


def dispatch(background: BackgroundTasks | None, func: Callable[..., Any], *args: Any, **kwargs: Any) -> None:
    """Schedule ``func`` after the response, or run it now when no task queue is given.

    Inline runs never propagate errors to the caller.
    """

    if background is not None:
        background.add_task(func, *args, **kwargs)
        return
    try:
        func(*args, **kwargs)
    except Exception:  # noqa: BLE001
        logger.exception("Side call failed", extra={"task": getattr(func, "__name__", repr(func))})


__all__ = ["dispatch"]

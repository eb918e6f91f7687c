from __future__ import annotations

import logging
from typing import Any, Protocol

from catalog_sync.logging.activity_log import ActivityLogBuffer
from catalog_sync.models.activity_record import ActivityRecord

"""Logging collaborator used by the sync engine.

Engine components call ``log(level, message, context)``. The default
implementation forwards to the standard ``logging`` hierarchy and, when an
activity buffer is attached, also records a structured ActivityRecord.
Logging must never interrupt an import, so failures while emitting are
reported to ``logging`` and otherwise ignored.
"""

__all__ = [
    "EngineLogger",
    "SyncLogger",
]

_LEVELS = {
    "debug": logging.DEBUG,
    "info": logging.INFO,
    "notice": logging.INFO,
    "warning": logging.WARNING,
    "warn": logging.WARNING,
    "error": logging.ERROR,
    "critical": logging.CRITICAL,
}


class EngineLogger(Protocol):
    def log(self, level: str, message: str, context: dict[str, Any] | None = None) -> None: ...


class SyncLogger:
    def __init__(
        self,
        channel: str = "item_sync",
        *,
        logger: logging.Logger | None = None,
        activity: ActivityLogBuffer | None = None,
    ) -> None:
        self.channel = channel
        self._logger = logger or logging.getLogger(f"catalog_sync.{channel}")
        self._activity = activity

    def child(self, channel: str) -> SyncLogger:
        """Same sinks, different channel name."""
        return SyncLogger(
            channel,
            logger=logging.getLogger(f"catalog_sync.{channel}"),
            activity=self._activity,
        )

    def log(self, level: str, message: str, context: dict[str, Any] | None = None) -> None:
        levelno = _LEVELS.get(str(level).lower(), logging.INFO)
        context = dict(context or {})
        try:
            if context:
                details = " ".join(f"{k}={v}" for k, v in context.items())
                self._logger.log(levelno, f"{message} ({details})")
            else:
                self._logger.log(levelno, message)
            if self._activity is not None and levelno >= logging.INFO:
                action = str(context.pop("event", "") or level).lower()
                self._activity.append(
                    ActivityRecord.create(
                        logging.getLevelName(levelno), self.channel, action, message, context
                    )
                )
        except Exception as e:  # pragma: no cover - logging must not break a sync
            logging.getLogger(__name__).debug(f"log emit failed: {e}")

    def info(self, message: str, context: dict[str, Any] | None = None) -> None:
        self.log("info", message, context)

    def warning(self, message: str, context: dict[str, Any] | None = None) -> None:
        self.log("warning", message, context)

    def error(self, message: str, context: dict[str, Any] | None = None) -> None:
        self.log("error", message, context)

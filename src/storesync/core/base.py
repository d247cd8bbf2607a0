"""Shared pydantic bases.

Models that own something needing cleanup (an open log file, a span
processor) are closed from the top down:

    State.close() -> Config.close() -> Logger.close() -> Sink.close()

Kept apart from config.py and log.py, which both build on it.
"""

from __future__ import annotations

import sys
from typing import Protocol, runtime_checkable

from pydantic import BaseModel


@runtime_checkable
class Closeable(Protocol):
    def close(self) -> None: ...


class BaseCloseable(BaseModel):
    """Model whose close() closes every Closeable field it holds.

    Also a context manager. One child failing to close is reported on
    stderr, since the logger may be what just failed, and the rest are
    still closed.
    """

    def close(self):
        for name in type(self).model_fields:
            child = getattr(self, name, None)
            if not isinstance(child, Closeable):
                continue
            try:
                child.close()
            except Exception as e:
                print(f"Warning: could not close {name}: {e}", file=sys.stderr)

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
        return False


class BaseConfig(BaseCloseable):
    """A configuration section (YAML, environment or command line)."""


class BaseState(BaseCloseable):
    """Runtime state a workflow mutates while it runs."""


__all__ = ["BaseCloseable", "BaseConfig", "BaseState", "Closeable"]

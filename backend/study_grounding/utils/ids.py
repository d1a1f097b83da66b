"""Identifier and timestamp helpers."""

from __future__ import annotations

import time
import uuid


def new_id(prefix: str | None = None) -> str:
    """Random hex id, optionally namespaced (``doc_…``, ``chk_…``)."""
    base = uuid.uuid4().hex
    return f"{prefix}_{base}" if prefix else base


def now_ms() -> int:
    """Current wall-clock time in epoch milliseconds."""
    return int(time.time() * 1000)


__all__ = ["new_id", "now_ms"]

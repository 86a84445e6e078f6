"""Shared utilities."""

from __future__ import annotations

import math
import uuid
from datetime import datetime, timezone
from typing import Any

import orjson


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def json_dumps(obj: Any) -> str:
    return orjson.dumps(obj).decode()


def json_loads(data: str | bytes) -> Any:
    return orjson.loads(data)


def iso_str(dt: datetime) -> str:
    return dt.isoformat()


def parse_iso(s: str) -> datetime:
    dt = datetime.fromisoformat(s)
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt


def new_id() -> str:
    return uuid.uuid4().hex


def clamp(value: float, lo: float = 0.0, hi: float = 1.0) -> float:
    """Clamp into [lo, hi]. NaN collapses to ``lo``."""
    if math.isnan(value):
        return lo
    return max(lo, min(hi, value))


def hours_between(start: datetime, end: datetime) -> float:
    """Elapsed hours from ``start`` to ``end``; never negative."""
    return max(0.0, (end - start).total_seconds() / 3600.0)


def mean(values: list[float]) -> float:
    return sum(values) / len(values) if values else 0.0

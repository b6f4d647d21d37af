"""Common utility helpers."""

from __future__ import annotations

from datetime import datetime, timezone
from time import perf_counter
from uuid import uuid4


_RISK_ORDER = {"LOW": 0, "MEDIUM": 1, "HIGH": 2, "CRITICAL": 3}


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def new_id() -> str:
    return str(uuid4())


def now_ms() -> float:
    return perf_counter() * 1000.0


def elapsed_ms(start_ms: float) -> int:
    return int(perf_counter() * 1000.0 - start_ms)


def risk_rank(risk: str) -> int:
    return _RISK_ORDER[getattr(risk, "value", risk)]

from __future__ import annotations

import time
import uuid
from datetime import datetime


def new_id(prefix: str) -> str:
    ts = time.time_ns()
    rand = uuid.uuid4().hex
    return f"{prefix}_{ts:016x}_{rand}"


def now_ts_ms() -> int:
    return int(time.time() * 1000)


def format_ts_ms(ts_ms: int, fmt: str = "%Y-%m-%d %H:%M:%S") -> str:
    return datetime.fromtimestamp(ts_ms / 1000).strftime(fmt)

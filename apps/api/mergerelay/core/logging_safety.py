"""Utilities for safe structured logging fields."""

from __future__ import annotations

import hashlib
import re
from typing import Any

_ANSI_RE = re.compile(r"\x1B\[[0-?]*[ -/]*[@-~]")
_CTRL_RE = re.compile(r"[\x00-\x08\x0b\x0c\x0e-\x1f\x7f]")


def safe_log_identifier(value: Any, *, prefix: str) -> str:
    """Return a deterministic non-reversible token for log correlation fields."""
    text = str(value or "").strip()
    if not text:
        return f"{prefix}-missing"

    digest = hashlib.sha256(text.encode("utf-8")).hexdigest()[:12]
    return f"{prefix}-{digest}"


def tail_text(text: str | None, *, max_lines: int = 20, max_chars: int = 4000) -> str:
    """Strip terminal noise from process output and keep only its tail."""
    if not text:
        return ""
    cleaned = _CTRL_RE.sub("", _ANSI_RE.sub("", text))
    lines = [line for line in cleaned.splitlines() if line.strip()]
    tail = "\n".join(lines[-max_lines:])
    if len(tail) > max_chars:
        tail = tail[-max_chars:]
    return tail

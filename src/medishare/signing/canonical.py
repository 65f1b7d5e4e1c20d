"""Canonical JSON serialisation for session signatures."""

from __future__ import annotations

import json
from typing import Any

__all__ = ["canonicalise"]


def canonicalise(payload: dict[str, Any]) -> str:
    """Sorted keys, no whitespace, ``None`` values dropped.

    Dropping ``None`` keeps ``{"patient_id": p}`` and
    ``{"patient_id": p, "facility_id": None}`` on the same signature.
    """
    trimmed = {k: v for k, v in payload.items() if v is not None}
    return json.dumps(trimmed, sort_keys=True, separators=(",", ":"), default=str)

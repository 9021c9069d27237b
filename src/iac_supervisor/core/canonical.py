# src/iac_supervisor/core/canonical.py
"""
Canonical JSON serialization for artifacts written by the supervisor.

Two-phase approach:
1. Normalize: Convert Paths, Enums and tuples to JSON-safe primitives (our code)
2. Serialize: Produce deterministic JSON per RFC 8785/JCS (rfc8785 package)

Downstream tooling compares artifacts across runs, so anything the
supervisor writes itself must be byte-identical for identical input.
NaN and Infinity are rejected, not silently converted.
"""

import hashlib
import math
from enum import Enum
from pathlib import PurePath
from typing import Any

import rfc8785


def _normalize_value(obj: Any) -> Any:
    """Convert a value to a JSON-safe primitive.

    Raises:
        ValueError: If value contains NaN or Infinity
        TypeError: If value has no JSON representation
    """
    if isinstance(obj, float):
        if math.isnan(obj) or math.isinf(obj):
            raise ValueError(
                f"Cannot canonicalize non-finite float: {obj}. "
                "Use None for missing values, not NaN."
            )
        return obj

    if obj is None or isinstance(obj, (str, int, bool)):
        return obj

    if isinstance(obj, Enum):
        return _normalize_value(obj.value)
    if isinstance(obj, PurePath):
        return str(obj)
    if isinstance(obj, dict):
        return {str(k): _normalize_value(v) for k, v in obj.items()}
    if isinstance(obj, (list, tuple)):
        return [_normalize_value(v) for v in obj]

    raise TypeError(f"Cannot canonicalize {type(obj).__name__}: {obj!r}")


def canonical_json(obj: Any) -> str:
    """Serialize to RFC 8785 canonical JSON (sorted keys, no whitespace)."""
    return rfc8785.dumps(_normalize_value(obj)).decode("utf-8")


def stable_hash(obj: Any) -> str:
    """SHA-256 hex digest of the canonical JSON form."""
    return hashlib.sha256(canonical_json(obj).encode("utf-8")).hexdigest()


def error_document(message: str, **details: Any) -> str:
    """Placeholder JSON document carrying an explicit error marker.

    Written wherever a machine-readable artifact was expected but could not
    be produced, so consumers always find a parseable file.

    Example:
        >>> error_document("Plan file not found")
        '{"error":"Plan file not found"}\n'
    """
    return canonical_json({"error": message, **details}) + "\n"

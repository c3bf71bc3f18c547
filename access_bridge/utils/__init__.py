"""Utility helpers (ids, timestamps, formatting)."""

from .helpers import (
    format_duration,
    generate_request_id,
    parse_timestamp,
    slugify,
    to_epoch_ms,
    utc_now,
)

__all__ = [
    "format_duration",
    "generate_request_id",
    "parse_timestamp",
    "slugify",
    "to_epoch_ms",
    "utc_now",
]

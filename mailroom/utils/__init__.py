"""Shared utilities for timestamps and text handling."""

from .text import html_to_text, interpolate, sanitize_for_log, text_to_html
from .timestamps import days_between, ensure_utc, format_timestamp, utc_now

__all__ = [
    "days_between",
    "ensure_utc",
    "format_timestamp",
    "html_to_text",
    "interpolate",
    "sanitize_for_log",
    "text_to_html",
    "utc_now",
]

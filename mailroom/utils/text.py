"""Text helpers for email bodies and log-safe values."""

import html
import re
from typing import Mapping, Optional

_SCRIPT_BLOCK = re.compile(r"<script\b[^>]*>[\s\S]*?</script>", re.IGNORECASE)
_STYLE_BLOCK = re.compile(r"<style\b[^>]*>[\s\S]*?</style>", re.IGNORECASE)
_TAG = re.compile(r"<[^>]+>")
_WHITESPACE = re.compile(r"\s+")


def sanitize_for_log(value: Optional[str]) -> str:
    """Strip CR, LF and TAB so user-supplied values cannot forge log lines."""
    if not value:
        return ""
    return re.sub(r"[\r\n\t]", "", str(value))


def _remove_repeatedly(pattern: re.Pattern, text: str) -> str:
    # Nested or overlapping blocks can reappear after a single pass
    previous = None
    while previous != text:
        previous = text
        text = pattern.sub("", text)
    return text


def html_to_text(html_body: str) -> str:
    """Derive a plain-text body from HTML.

    Removes script and style blocks, strips remaining tags, decodes
    ``&nbsp;`` and collapses whitespace.
    """
    stripped = _remove_repeatedly(_SCRIPT_BLOCK, html_body)
    stripped = _remove_repeatedly(_STYLE_BLOCK, stripped)
    stripped = _TAG.sub("", stripped).replace("&nbsp;", " ")
    return _WHITESPACE.sub(" ", stripped).strip()


def text_to_html(text_body: str) -> str:
    """Wrap a plain-text body in minimal HTML, escaping markup."""
    paragraphs = [p for p in text_body.split("\n\n") if p.strip()]
    rendered = "".join(
        f"<p>{html.escape(p.strip()).replace(chr(10), '<br>')}</p>" for p in paragraphs
    )
    return f"<div>{rendered}</div>"


def interpolate(template: str, fields: Mapping[str, Optional[str]]) -> str:
    """Replace ``{{name}}`` placeholders with values from ``fields``.

    Only the placeholders named in ``fields`` are touched; missing values
    render as empty strings.
    """
    result = template
    for name, value in fields.items():
        result = result.replace("{{" + name + "}}", value or "")
    return result

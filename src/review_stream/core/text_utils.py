# src/review_stream/core/text_utils.py
"""
Text helpers shared by the dispatcher and the log aggregator.
"""
import re

_SPAN_RE = re.compile(r"<span[^>]*>(.*?)</span>", re.DOTALL)
_TAG_RE = re.compile(r"</?[^>]+(>|$)")

_ENTITIES = (
    ("&nbsp;", " "),
    ("&lt;", "<"),
    ("&gt;", ">"),
    ("&amp;", "&"),
    ("&quot;", '"'),
    ("&#39;", "'"),
)


def sanitize_html(text: str) -> str:
    """Strip inline markup and unescape the basic entities."""
    if not text:
        return ""

    # Inline styled spans (e.g. opacity:0 streaming cursors) keep their text
    text = _SPAN_RE.sub(r"\1", text)
    text = _TAG_RE.sub("", text)
    for entity, char in _ENTITIES:
        text = text.replace(entity, char)
    return text


def preview(text: str, limit: int = 200) -> str:
    """Single-line preview of a possibly long payload for log messages."""
    flat = " ".join((text or "").split())
    if len(flat) > limit:
        return flat[:limit] + "..."
    return flat

# src/review_stream/core/log_aggregator.py
"""
Ordered analysis log with per-kind upsert.
"""
from typing import List, Optional
import logging

from review_stream.core.form_models import LogEntry
from review_stream.core.text_utils import sanitize_html

logger = logging.getLogger(__name__)


class LogAggregator:
    """Keep the typed log lines shown in the analysis panel."""

    def __init__(self):
        self._entries: List[LogEntry] = []

    @property
    def entries(self) -> List[LogEntry]:
        return list(self._entries)

    def record(self, kind: str, text: str) -> LogEntry:
        """Add a new entry, even if one of this kind exists."""
        entry = LogEntry(kind=kind, text=sanitize_html(text))
        self._entries.append(entry)
        logger.debug(f"[{kind}] {entry.text[:120]}")
        return entry

    def append(self, kind: str, text: str, append: bool = False) -> LogEntry:
        """
        Create the entry for `kind`, or update the existing one.

        With append=True the text is added to the existing entry, otherwise
        it replaces it (last writer wins).
        """
        existing = self.find(kind)
        if existing is None:
            return self.record(kind, text)

        if append:
            existing.text = sanitize_html(existing.text + text)
        else:
            existing.text = sanitize_html(text)
        return existing

    def find(self, kind: str) -> Optional[LogEntry]:
        for entry in self._entries:
            if entry.kind == kind:
                return entry
        return None

    def of_kind(self, kind: str) -> List[LogEntry]:
        return [e for e in self._entries if e.kind == kind]

    def clear(self):
        self._entries.clear()

    def __len__(self) -> int:
        return len(self._entries)

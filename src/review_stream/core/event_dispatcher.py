# src/review_stream/core/event_dispatcher.py
"""
Route framed SSE messages to session state, logs and the form merge engine.

Every message is handled synchronously. Only an explicit backend error
stops the stream; any other problem is recovered or logged and the next
message is processed.
"""
import json
import logging
from enum import Enum
from typing import Any, Callable, Dict, Optional

from review_stream.core.form_merge import FormMergeEngine, has_form_keys
from review_stream.core.form_models import MergeMode, SessionPhase, StreamSession
from review_stream.core.json_repair import extract_fenced_json, try_repair_json
from review_stream.core.log_aggregator import LogAggregator
from review_stream.core.text_utils import preview, sanitize_html

logger = logging.getLogger(__name__)

DONE_SENTINEL = "[DONE]"
_IGNORED_FIELDS = ("event:", "id:", "retry:")

# Envelope type -> (payload key, accumulator attribute on StreamSession)
TEXT_EVENTS = {
    'reasoning': ('reasoning', 'reasoning_text'),
    'content': ('content', 'final_content'),
    'json_structure': ('json_structure', 'json_structure_text'),
}


class DispatchResult(str, Enum):
    """What the stream loop should do after a message."""
    CONTINUE = "continue"
    HALT = "halt"  # Backend error, stop reading
    DONE = "done"  # End-of-stream sentinel


def parse_sse_data(message: str) -> Optional[str]:
    """
    Return the joined `data:` payload of a message, or None for non-SSE text.

    Comment lines and event/id/retry fields are ignored. Lines that carry no
    field name are treated as a continuation of the data payload.
    """
    data_lines = []
    for line in message.split("\n"):
        if line.startswith("data:"):
            value = line[5:]
            if value.startswith(" "):
                value = value[1:]
            data_lines.append(value)
        elif line.startswith(":") or line.startswith(_IGNORED_FIELDS):
            continue
        elif data_lines:
            data_lines.append(line)

    if not data_lines:
        return None
    return "\n".join(data_lines).strip()


def _number_label(value: Any) -> str:
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value)


class EventDispatcher:
    """Classify envelopes by `type` and apply them to the session."""

    def __init__(
            self,
            state: StreamSession,
            merge_engine: FormMergeEngine,
            logs: LogAggregator
    ):
        self.state = state
        self.merge_engine = merge_engine
        self.logs = logs
        self._handlers: Dict[str, Callable[[Dict[str, Any]], DispatchResult]] = {
            'progress': self._handle_progress,
            'json_complete': self._handle_json_complete,
            'error': self._handle_error,
        }

    def dispatch(self, message: str) -> DispatchResult:
        """Process one framed message. Never raises for bad payloads."""
        if not message or not message.strip():
            return DispatchResult.CONTINUE

        try:
            payload = parse_sse_data(message)
            if payload is None:
                return self._recover_raw(message)
            if payload == DONE_SENTINEL:
                return DispatchResult.DONE
            return self._dispatch_payload(payload)
        except Exception as e:
            logger.error(f"Failed to process message: {e}")
            self.logs.record('error', f"Failed to process message: {e}")
            return DispatchResult.CONTINUE

    # ------------------------------------------------------------------
    # Parsing
    # ------------------------------------------------------------------

    def _dispatch_payload(self, payload: str) -> DispatchResult:
        try:
            envelope = json.loads(payload)
        except ValueError as e:
            logger.warning(f"JSON parsing error, attempting repair: {e}")
            envelope = try_repair_json(payload)
            if envelope is None:
                logger.error(f"Unable to recover message: {preview(payload)}")
                self.logs.record('error', f"JSON parsing error: {e} ({preview(payload, 120)})")
                return DispatchResult.CONTINUE

        if not isinstance(envelope, dict):
            self.logs.record('unknown', f"Received unknown type message: {preview(payload, 120)}")
            return DispatchResult.CONTINUE
        return self._route(envelope, payload)

    def _route(self, envelope: Dict[str, Any], raw: str) -> DispatchResult:
        event_type = envelope.get('type')
        if not isinstance(event_type, str):
            return self._handle_unrecognized(envelope, raw)
        if event_type in TEXT_EVENTS:
            return self._handle_text(event_type, envelope)
        handler = self._handlers.get(event_type)
        if handler is None:
            return self._handle_unrecognized(envelope, raw)
        return handler(envelope)

    def _recover_raw(self, text: str) -> DispatchResult:
        """Best-effort handling of a message without any data: field."""
        logger.debug(f"Non-SSE message: {preview(text)}")
        value = try_repair_json(text)
        if not isinstance(value, dict) or not value:
            logger.debug("No structured data in non-SSE message")
            return DispatchResult.CONTINUE

        event_type = value.get('type')
        if isinstance(event_type, str) and (event_type in TEXT_EVENTS or event_type in self._handlers):
            return self._route(value, text)
        if self._merge(value, MergeMode.PARTIAL):
            self.logs.record('success', "Successfully extracted data from non-SSE message")
        return DispatchResult.CONTINUE

    # ------------------------------------------------------------------
    # Handlers
    # ------------------------------------------------------------------

    def _handle_progress(self, envelope: Dict[str, Any]) -> DispatchResult:
        current = envelope.get('current')
        total = envelope.get('total')
        try:
            ratio = float(current) / float(total)
        except (TypeError, ValueError, ZeroDivisionError):
            logger.warning(f"Ignoring invalid progress: {current!r}/{total!r}")
            self.logs.record('warning', f"Invalid progress update: {current!r}/{total!r}")
            return DispatchResult.CONTINUE

        label = f"Processing page {_number_label(current)}/{_number_label(total)}"
        self.state.progress = max(0.0, min(100.0, ratio * 100))
        self.state.status_message = envelope.get('message') or label
        self.logs.append('progress', label)
        return DispatchResult.CONTINUE

    def _handle_text(self, event_type: str, envelope: Dict[str, Any]) -> DispatchResult:
        key, attribute = TEXT_EVENTS[event_type]
        text = envelope.get(key)
        if text is None or text == "":
            return DispatchResult.CONTINUE
        if not isinstance(text, str):
            text = json.dumps(text, ensure_ascii=False) if isinstance(text, (dict, list)) else str(text)

        accumulated = getattr(self.state, attribute) + sanitize_html(text)
        setattr(self.state, attribute, accumulated)
        self.logs.append(event_type, accumulated)
        return DispatchResult.CONTINUE

    def _handle_json_complete(self, envelope: Dict[str, Any]) -> DispatchResult:
        payload = envelope.get('json_complete')
        if not payload:
            self.logs.record('warning', "Received empty complete JSON structure")
            return DispatchResult.CONTINUE

        logger.info("Received complete JSON structure")
        self.logs.record('json_complete', "Received complete JSON structure")
        self.state.json_complete_ready = True

        if isinstance(payload, str):
            value = try_repair_json(payload)
            if not isinstance(value, dict):
                logger.error(f"Unable to parse complete JSON structure: {preview(payload)}")
                self.logs.record('error', f"Unable to parse complete JSON structure: {preview(payload, 120)}")
                return DispatchResult.CONTINUE
            payload = value
        elif not isinstance(payload, dict):
            self.logs.record('error', f"Complete JSON structure is not an object: {preview(repr(payload), 120)}")
            return DispatchResult.CONTINUE

        self._merge(payload, MergeMode.COMPLETE)
        return DispatchResult.CONTINUE

    def _handle_error(self, envelope: Dict[str, Any]) -> DispatchResult:
        message = envelope.get('message') or 'Unknown error during processing'
        logger.error(f"Backend error: {message}")
        self.state.error = str(message)
        self.state.phase = SessionPhase.FAILED
        self.logs.record('error', str(message))
        return DispatchResult.HALT

    def _handle_unrecognized(self, envelope: Dict[str, Any], raw: str) -> DispatchResult:
        logger.warning(f"Unknown message type: {envelope.get('type')!r}")

        # Code blocks may sit in the raw text or in a string field of the envelope
        texts = [raw] + [v for v in envelope.values() if isinstance(v, str)]
        for text in texts:
            fenced = extract_fenced_json(text)
            if fenced is None:
                continue
            value = try_repair_json(fenced)
            if isinstance(value, dict) and value:
                self.logs.record('json_extract', "Extracted JSON code block from original message")
                self._merge(value, MergeMode.PARTIAL)
                return DispatchResult.CONTINUE

        if has_form_keys(envelope):
            self._merge(envelope, MergeMode.PARTIAL)
        elif envelope:
            if self._merge(envelope, MergeMode.PARTIAL):
                self.logs.record('warning', "Applied non-standard format data")
        else:
            self.logs.record('unknown', f"Received unknown type message: {preview(raw, 120)}")
        return DispatchResult.CONTINUE

    # ------------------------------------------------------------------

    def _merge(self, data: Any, mode: MergeMode) -> bool:
        was_initialized = self.merge_engine.structure_initialized
        changed = self.merge_engine.merge(data, mode)

        if not was_initialized and self.merge_engine.structure_initialized:
            self.logs.record('structure-init', "Form structure initialized")
        if changed:
            label = "Form data completely updated" if mode is MergeMode.COMPLETE else "Form data partially updated"
            self.logs.append('data-update', label)
        return changed

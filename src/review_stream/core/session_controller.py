# src/review_stream/core/session_controller.py
"""
Lifecycle of one review analysis: request, stream, reconcile, publish.

States: IDLE -> AWAITING (request in flight) -> STREAMING (headers received)
-> COMPLETE | FAILED. Every start or reset bumps the generation token; a
stream loop holding an older token stops without touching state.
"""
import logging
import time
from contextlib import aclosing
from datetime import datetime, timezone
from typing import Any, AsyncIterator, Callable, Dict, List, Optional

from review_stream.config import load_config
from review_stream.core.defaults import default_form_document
from review_stream.core.event_dispatcher import DispatchResult, EventDispatcher
from review_stream.core.form_merge import FormMergeEngine
from review_stream.core.form_models import (
    FormDocument,
    LogEntry,
    MergeMode,
    SessionPhase,
    StreamSession,
)
from review_stream.core.json_repair import try_repair_json
from review_stream.core.log_aggregator import LogAggregator
from review_stream.core.stream_reader import SSEStreamReader
from review_stream.core.text_utils import preview
from review_stream.core.update_channel import DocumentCallback, UpdateChannel, UpdateThrottle
from review_stream.errors import (
    APIError,
    ConfigurationError,
    StreamInterruptedError,
    TransportError,
)

logger = logging.getLogger(__name__)


class ReviewSession:
    """Outward interface of the stream reconciliation engine."""

    def __init__(
            self,
            client=None,
            config: Optional[Dict[str, Any]] = None,
            default_document: Optional[FormDocument] = None,
            clock: Callable[[], float] = time.monotonic
    ):
        self.client = client
        if config is None:
            config = client.config if client is not None else load_config()
        self.config = config

        session_config = self.config.get('session', {})
        interval = float(session_config.get('throttle_ms', 200)) / 1000.0

        self.channel = UpdateChannel()
        self.throttle = UpdateThrottle(self.channel.publish, interval=interval, clock=clock)
        self.merge_engine = FormMergeEngine(
            default_document if default_document is not None else default_form_document(),
            on_warning=self._on_merge_warning
        )
        self.merge_engine.register_update_callback(self._on_document_changed)

        self._generation = 0
        self._publish_immediately = False
        self._reset_run_state()

    # ------------------------------------------------------------------
    # Observable state
    # ------------------------------------------------------------------

    @property
    def document(self) -> FormDocument:
        return self.merge_engine.document

    @property
    def logs(self) -> List[LogEntry]:
        return self.log.entries

    @property
    def phase(self) -> SessionPhase:
        return self.state.phase

    @property
    def progress(self) -> float:
        return self.state.progress

    @property
    def status_message(self) -> str:
        return self.state.status_message

    @property
    def error(self) -> Optional[str]:
        return self.state.error

    @property
    def json_complete_ready(self) -> bool:
        return self.state.json_complete_ready

    @property
    def reasoning_text(self) -> str:
        return self.state.reasoning_text

    @property
    def final_content(self) -> str:
        return self.state.final_content

    @property
    def json_structure_text(self) -> str:
        return self.state.json_structure_text

    @property
    def generation(self) -> int:
        return self._generation

    # ------------------------------------------------------------------
    # Subscriptions
    # ------------------------------------------------------------------

    def register_update_callback(self, callback: Optional[DocumentCallback]):
        """Set the single renderer callback (None to clear it)."""
        self.channel.register(callback)

    def subscribe(self, callback: DocumentCallback) -> Callable[[], None]:
        """Add a subscriber; call the returned function to unsubscribe."""
        return self.channel.subscribe(callback)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def start_analysis(self, file_path: str) -> bool:
        """
        Run an analysis of an uploaded file.

        Returns True when the stream ended normally, False on failure or when
        the run was superseded by reset_session()/another start.
        """
        if self.client is None:
            raise ConfigurationError("ReviewSession has no client; use consume_stream() instead")

        generation = self._begin_run(file_path)
        try:
            async with self.client.stream_review(file_path) as response:
                if not self._is_current(generation):
                    return False
                return await self._consume(response.aiter_bytes(), generation)
        except (APIError, TransportError) as e:
            if self._is_current(generation):
                self._fail(str(e))
            return False
        finally:
            logger.info("Analysis process ended")

    async def consume_stream(self, chunks: AsyncIterator[bytes], file_path: Optional[str] = None) -> bool:
        """Run the engine over an already open byte stream (e.g. a recording)."""
        generation = self._begin_run(file_path)
        return await self._consume(chunks, generation)

    def reset_session(self):
        """Cancel any run and return to an empty, idle session."""
        logger.info("Resetting review session")
        self._generation += 1
        self._reset_run_state()

    def apply_user_edit(self, patch: Any) -> bool:
        """Merge a user edit; only the fields in `patch` are touched."""
        self._publish_immediately = True
        try:
            return self.merge_engine.merge(patch, MergeMode.PARTIAL)
        finally:
            self._publish_immediately = False

    def apply_json_structure(self) -> bool:
        """
        Merge the structure text received so far into the form.

        Streamed structure text is only accumulated; the caller decides when
        it is applied. Returns True when the document changed.
        """
        text = self.state.json_structure_text
        if not text.strip():
            return False

        value = try_repair_json(text)
        if not isinstance(value, dict):
            logger.warning(f"Structure text is not a JSON object: {preview(text)}")
            self.log.record('warning', "Unable to apply JSON structure")
            return False

        changed = self.apply_user_edit(value)
        if changed:
            self.log.append('data-update', "Form data partially updated")
        return changed

    def flush(self) -> bool:
        """Publish a throttled update right away."""
        return self.throttle.flush()

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _is_current(self, generation: int) -> bool:
        return generation == self._generation

    def _reset_run_state(self):
        self.state = StreamSession(generation=self._generation)
        self.log = LogAggregator()
        self.dispatcher = EventDispatcher(self.state, self.merge_engine, self.log)
        self.merge_engine.reset()
        self.throttle.reset()
        self.channel.publish(self.merge_engine.document)

    def _begin_run(self, file_path: Optional[str]) -> int:
        self._generation += 1
        self._reset_run_state()

        self.state.phase = SessionPhase.AWAITING
        self.state.file_path = file_path
        self.state.started_at = datetime.now(timezone.utc).isoformat()
        self.state.status_message = "Preparing to start analysis..."
        self.log.record('init', "Starting document analysis...")
        logger.info(f"Starting analysis run {self._generation} for {file_path}")
        return self._generation

    async def _consume(self, chunks: AsyncIterator[bytes], generation: int) -> bool:
        self.state.phase = SessionPhase.STREAMING
        self.state.status_message = "Receiving analysis..."
        logger.info("Starting to read stream response")

        def is_current() -> bool:
            return self._is_current(generation)

        reader = SSEStreamReader()
        try:
            async with aclosing(reader.messages(chunks, is_current)) as messages:
                async for message in messages:
                    if not is_current():
                        return False
                    result = self.dispatcher.dispatch(message)
                    if result is DispatchResult.HALT:
                        logger.info("Backend reported an error, halting stream")
                        break
                    if result is DispatchResult.DONE:
                        break
        except StreamInterruptedError as e:
            if is_current():
                self.throttle.flush()
                self._fail(f"Connection interrupted: {e}")
            return False

        if not is_current():
            logger.info(f"Run {generation} was superseded")
            return False

        self.throttle.flush()
        if self.state.phase is SessionPhase.FAILED:
            self.state.status_message = self.state.error or "Analysis failed"
            return False

        self.state.phase = SessionPhase.COMPLETE
        self.state.status_message = "Analysis complete"
        logger.info("Analysis complete")
        return True

    def _fail(self, message: str):
        logger.error(f"Analysis error: {message}")
        self.state.phase = SessionPhase.FAILED
        self.state.error = message
        self.state.status_message = message
        self.log.record('error', message)

    def _on_document_changed(self, document: FormDocument, mode: MergeMode):
        immediate = self._publish_immediately or mode is MergeMode.COMPLETE
        self.throttle.submit(document, immediate=immediate)

    def _on_merge_warning(self, message: str):
        self.log.record('warning', message)

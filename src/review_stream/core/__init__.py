# src/review_stream/core/__init__.py
"""
Core modules: JSON repair, form merge, log aggregation, SSE dispatch and the
session controller.
"""

from review_stream.core.json_repair import repair_json, try_repair_json, normalize_incoming
from review_stream.core.form_merge import FormMergeEngine, merge_form_data
from review_stream.core.log_aggregator import LogAggregator
from review_stream.core.event_dispatcher import EventDispatcher, DispatchResult
from review_stream.core.stream_reader import SSEStreamReader
from review_stream.core.update_channel import UpdateChannel, UpdateThrottle
from review_stream.core.session_controller import ReviewSession

__all__ = [
    'repair_json',
    'try_repair_json',
    'normalize_incoming',
    'FormMergeEngine',
    'merge_form_data',
    'LogAggregator',
    'EventDispatcher',
    'DispatchResult',
    'SSEStreamReader',
    'UpdateChannel',
    'UpdateThrottle',
    'ReviewSession'
]

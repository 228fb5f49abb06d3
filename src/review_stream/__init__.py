# src/review_stream/__init__.py
"""
review-stream: live reconciliation of streamed paper reviews into a review form.
"""

__version__ = "0.1.0"

from review_stream.core.session_controller import ReviewSession
from review_stream.core.form_models import FormDocument, MergeMode, SessionPhase
from review_stream.core.json_repair import repair_json
from review_stream.api.client import ReviewClient

__all__ = [
    'ReviewSession',
    'ReviewClient',
    'FormDocument',
    'MergeMode',
    'SessionPhase',
    'repair_json'
]

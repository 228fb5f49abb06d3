# src/review_stream/api/__init__.py
"""
HTTP client for the analysis backend.
"""

from review_stream.api.client import ReviewClient

__all__ = [
    'ReviewClient'
]

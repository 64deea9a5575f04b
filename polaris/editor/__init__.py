"""
Editor - client side of inline suggestions and quick edit.
"""

from .fetcher import SuggestionClient
from .suggestion import EditorState, RateLimiter, SuggestionSession, build_suggestion_payload

__all__ = [
    "EditorState",
    "RateLimiter",
    "SuggestionClient",
    "SuggestionSession",
    "build_suggestion_payload",
]

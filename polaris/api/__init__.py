"""
API Module - FastAPI endpoints organized by domain.

Each module exposes an APIRouter; polaris.main includes them all.
"""

from . import health
from . import llm_config
from . import messages
from . import suggestion

__all__ = [
    "health",
    "llm_config",
    "messages",
    "suggestion",
]

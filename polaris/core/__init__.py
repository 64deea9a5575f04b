"""
Core - settings, LLM access, prompts and routing.

The agent loop lives in polaris.core.agent and is imported directly; it
depends on the tools package, which in turn depends on core.config.
"""

from . import config
from . import llm
from . import prompts
from . import router

__all__ = ["config", "llm", "prompts", "router"]

"""
Unified LLM provider layer — powered by LiteLLM.

Three model roles, each a LiteLLM model string:
    coding_model      — the tool-calling agent that edits the project
    title_model       — one short call to name a new conversation
    suggestion_model  — inline completions and quick edits in the editor

Model string format (LiteLLM convention):
    "gemini/gemini-2.5-flash"
    "anthropic/claude-sonnet-4-20250514"
    "openai/gpt-4o"

API keys are read from env vars automatically:
    GEMINI_API_KEY, ANTHROPIC_API_KEY, OPENAI_API_KEY, GROQ_API_KEY, etc.
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass

import litellm
from litellm import acompletion

# LangChain integration (via dedicated langchain-litellm package)
from langchain_litellm import ChatLiteLLM

logger = logging.getLogger(__name__)

# Suppress litellm's verbose logging by default
litellm.suppress_debug_info = True
litellm.set_verbose = False

DEFAULT_MODEL = "gemini/gemini-2.5-flash"

# Generation parameters per role
CODING_TEMPERATURE = 0.3
CODING_MAX_TOKENS = 16_000
TITLE_TEMPERATURE = 0.0
TITLE_MAX_TOKENS = 50


# ── Provider Registry ──────────────────────────────────────────────
# Maps provider prefix → env var name for the API key.
# LiteLLM handles these automatically, but we track them for
# the /models endpoint so callers know what's available.

PROVIDERS: dict[str, dict] = {
    "gemini": {
        "name": "Google Gemini",
        "env_key": "GEMINI_API_KEY",
        "models": [
            "gemini/gemini-2.5-flash",
            "gemini/gemini-2.5-pro",
            "gemini/gemini-2.0-flash",
            "gemini/gemini-2.0-flash-lite",
        ],
    },
    "anthropic": {
        "name": "Anthropic (Claude)",
        "env_key": "ANTHROPIC_API_KEY",
        "models": [
            "anthropic/claude-sonnet-4-20250514",
            "anthropic/claude-3-5-haiku-20241022",
        ],
    },
    "openai": {
        "name": "OpenAI",
        "env_key": "OPENAI_API_KEY",
        "models": [
            "openai/gpt-4o",
            "openai/gpt-4o-mini",
        ],
    },
    "groq": {
        "name": "Groq",
        "env_key": "GROQ_API_KEY",
        "models": [
            "groq/llama-3.3-70b-versatile",
            "groq/moonshotai/kimi-k2-instruct-0905",
        ],
    },
}

MODEL_ROLES = ("coding_model", "title_model", "suggestion_model")


# ── Active Model Configuration ────────────────────────────────────

@dataclass
class ModelConfig:
    """Runtime model configuration (mutable at runtime via /models/set)."""
    coding_model: str = ""
    title_model: str = ""
    suggestion_model: str = ""

    def __post_init__(self):
        if not self.coding_model:
            self.coding_model = _with_prefix(os.getenv("LLM_CODING_MODEL", DEFAULT_MODEL))
        # Title and suggestion models default to the coding model
        if not self.title_model:
            self.title_model = _with_prefix(os.getenv("LLM_TITLE_MODEL", self.coding_model))
        if not self.suggestion_model:
            self.suggestion_model = _with_prefix(os.getenv("LLM_SUGGESTION_MODEL", self.coding_model))


def _has_provider_prefix(model: str) -> bool:
    """Check if a model string already has a provider prefix."""
    known_prefixes = list(PROVIDERS.keys()) + [
        "azure", "ollama", "together_ai", "mistral", "deepseek", "bedrock",
    ]
    return any(model.startswith(f"{p}/") for p in known_prefixes)


def _with_prefix(model: str) -> str:
    # Bare model names are assumed to be Gemini
    return model if _has_provider_prefix(model) else f"gemini/{model}"


# Singleton config, modified by the /models/set endpoint
_config = ModelConfig()


def get_config() -> ModelConfig:
    return _config


def set_model(role: str, model: str):
    if role not in MODEL_ROLES:
        raise ValueError(f"Unknown model role: {role}")
    setattr(_config, role, _with_prefix(model))
    logger.info("%s set to: %s", role, getattr(_config, role))


# ── LangChain Chat Model Factory ──────────────────────────────────

def get_chat_model(
    model: str | None = None,
    temperature: float = 0.1,
    **kwargs,
) -> ChatLiteLLM:
    """
    Create a LangChain-compatible chat model backed by LiteLLM.

    Works with any provider: pass the litellm model string.
    If model is None, uses the configured coding model.
    """
    if model is None:
        model = _config.coding_model

    logger.debug("Creating chat model: %s (temp=%.2f)", model, temperature)
    return ChatLiteLLM(
        model=model,
        temperature=temperature,
        **kwargs,
    )


# ── Direct LiteLLM Completion (suggestions, quick edit) ────────────

async def completion(
    messages: list[dict],
    model: str | None = None,
    max_tokens: int = 1024,
    temperature: float = 0.1,
    **kwargs,
):
    """
    Direct LiteLLM async completion.

    Returns the raw litellm response object.
    Used by the editor endpoints that don't need tools or LangGraph.
    """
    if model is None:
        model = _config.suggestion_model

    response = await acompletion(
        model=model,
        messages=messages,
        max_tokens=max_tokens,
        temperature=temperature,
        **kwargs,
    )
    return response


def completion_text(response) -> str:
    """Pull the assistant text out of a litellm completion response."""
    try:
        content = response["choices"][0]["message"]["content"]
    except (KeyError, IndexError, TypeError):
        return ""
    return content or ""


# ── Provider Discovery ─────────────────────────────────────────────

def get_available_providers() -> list[dict]:
    """
    Return providers with a flag for whether an API key is configured.

    Each entry: {provider, name, env_key, models[], configured: bool}
    """
    result = []
    for provider_id, info in PROVIDERS.items():
        result.append({
            "provider": provider_id,
            "name": info["name"],
            "env_key": info["env_key"],
            "configured": bool(os.getenv(info["env_key"], "")),
            "models": info["models"],
        })
    return result


def get_active_models() -> dict:
    """Return currently active model configuration."""
    return {role: getattr(_config, role) for role in MODEL_ROLES}


# ── Startup Log ────────────────────────────────────────────────────

def log_provider_status():
    """Log which providers are configured (call at startup)."""
    configured = []
    missing = []
    for info in PROVIDERS.values():
        if os.getenv(info["env_key"], ""):
            configured.append(info["name"])
        else:
            missing.append(info["name"])

    logger.info(
        "LLM providers configured: %s",
        ", ".join(configured) if configured else "(none)",
    )
    if missing:
        logger.info(
            "LLM providers available (set API key to enable): %s",
            ", ".join(missing),
        )
    logger.info("Coding model: %s", _config.coding_model)
    logger.info("Title model: %s", _config.title_model)
    logger.info("Suggestion model: %s", _config.suggestion_model)

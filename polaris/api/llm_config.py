"""LLM model configuration endpoints."""

from fastapi import APIRouter

from ..core import llm as llm_provider
from ..models import ActiveModelsResponse, ProviderInfo, SetModelRequest, SetModelResponse

router = APIRouter(prefix="/models", tags=["models"])


@router.get("", response_model=ActiveModelsResponse)
async def get_models():
    """
    List available LLM providers, their models, and the current config.

    Providers with a configured API key show configured=true.
    Switch models at runtime with POST /models/set.
    """
    active = llm_provider.get_active_models()
    providers = [ProviderInfo(**p) for p in llm_provider.get_available_providers()]
    return ActiveModelsResponse(**active, providers=providers)


@router.post("/set", response_model=SetModelResponse)
async def set_models(req: SetModelRequest):
    """
    Switch any of the coding, title and suggestion models at runtime.

    Model string format: "provider/model-name"
    Examples:
        "gemini/gemini-2.5-pro"
        "anthropic/claude-sonnet-4-20250514"
        "openai/gpt-4o"
    """
    changes = []
    for role in llm_provider.MODEL_ROLES:
        model = getattr(req, role)
        if model:
            llm_provider.set_model(role, model)
            changes.append(f"{role.removesuffix('_model')} → {getattr(llm_provider.get_config(), role)}")

    return SetModelResponse(
        **llm_provider.get_active_models(),
        message=f"Updated: {', '.join(changes)}" if changes else "No changes",
    )

"""Pydantic request/response models for the Polaris API and editor client."""

from pydantic import BaseModel, Field, field_validator


# ── Messages ──────────────────────────────────────────────────────


class SendMessageRequest(BaseModel):
    conversation_id: str
    message: str

    @field_validator("message")
    @classmethod
    def _not_blank(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("Message cannot be empty")
        return v


class SendMessageResponse(BaseModel):
    success: bool
    event_id: str
    message_id: str


class CancelMessageRequest(BaseModel):
    message_id: str


class CancelMessageResponse(BaseModel):
    success: bool
    message_id: str


# ── Editor ────────────────────────────────────────────────────────


class SuggestionRequest(BaseModel):
    """Snapshot of the editor around the cursor."""
    file_name: str
    code: str
    current_line: str
    previous_lines: str = ""
    text_before_cursor: str = ""
    text_after_cursor: str = ""
    next_lines: str = ""
    line_number: int = Field(ge=1)


class SuggestionResponse(BaseModel):
    suggestion: str = ""


class QuickEditRequest(BaseModel):
    selected_code: str
    full_code: str
    instruction: str

    @field_validator("instruction")
    @classmethod
    def _not_blank(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("Instruction cannot be empty")
        return v


class QuickEditResponse(BaseModel):
    edited_code: str


# ── Health / models ───────────────────────────────────────────────


class HealthResponse(BaseModel):
    status: str
    store_ok: bool
    live_runs: int = 0
    version: str = "0.1.0"


class ProviderInfo(BaseModel):
    """A supported LLM provider."""
    provider: str           # "gemini", "anthropic", ...
    name: str               # "Google Gemini"
    env_key: str            # "GEMINI_API_KEY"
    configured: bool        # True if API key is set
    models: list[str]


class ActiveModelsResponse(BaseModel):
    coding_model: str
    title_model: str
    suggestion_model: str
    providers: list[ProviderInfo]


class SetModelRequest(BaseModel):
    """Any subset of the roles to change."""
    coding_model: str | None = None
    title_model: str | None = None
    suggestion_model: str | None = None


class SetModelResponse(BaseModel):
    coding_model: str
    title_model: str
    suggestion_model: str
    message: str

"""HTTP client the editor uses for /suggestion and /quick-edit."""

from __future__ import annotations

import logging

import httpx
from pydantic import ValidationError

from ..models import QuickEditRequest, QuickEditResponse, SuggestionRequest, SuggestionResponse

logger = logging.getLogger(__name__)

SUGGESTION_TIMEOUT = 10.0
QUICK_EDIT_TIMEOUT = 30.0


class SuggestionClient:
    """
    Thin async client over the Polaris editor endpoints.

    Failures (transport errors, non-2xx, malformed bodies) are logged and
    returned as None; the editor simply shows nothing. Task cancellation
    is not caught, so a superseded request stops immediately.
    """

    def __init__(
        self,
        base_url: str,
        transport: httpx.AsyncBaseTransport | None = None,
        headers: dict | None = None,
    ):
        self._client = httpx.AsyncClient(
            base_url=base_url,
            transport=transport,
            headers=headers,
        )

    async def fetch_suggestion(self, payload: SuggestionRequest) -> str | None:
        try:
            response = await self._client.post(
                "/suggestion",
                json=payload.model_dump(),
                timeout=SUGGESTION_TIMEOUT,
            )
            response.raise_for_status()
            body = SuggestionResponse.model_validate(response.json())
        except (httpx.HTTPError, ValidationError, ValueError) as e:
            logger.warning("[editor] suggestion request failed: %s", e)
            return None
        return body.suggestion or None

    async def quick_edit(self, selected_code: str, full_code: str, instruction: str) -> str | None:
        try:
            payload = QuickEditRequest(selected_code=selected_code, full_code=full_code, instruction=instruction)
            response = await self._client.post(
                "/quick-edit",
                json=payload.model_dump(),
                timeout=QUICK_EDIT_TIMEOUT,
            )
            response.raise_for_status()
            body = QuickEditResponse.model_validate(response.json())
        except (httpx.HTTPError, ValidationError, ValueError) as e:
            logger.warning("[editor] quick edit failed: %s", e)
            return None
        return body.edited_code or None

    async def aclose(self):
        await self._client.aclose()

    async def __aenter__(self) -> "SuggestionClient":
        return self

    async def __aexit__(self, *exc):
        await self.aclose()

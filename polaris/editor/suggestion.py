"""
Inline suggestion pipeline — the editor half of code completion.

One SuggestionSession per open file. Every edit or cursor move calls
`trigger()`:

    trigger ─┬→ rate limited? → clear suggestion, no request
             └→ cancel previous task, start new one:
                    sleep(debounce) → re-check limit → build payload
                    → record timestamp → fetch → apply (if still current)

At most one request is in flight: a new trigger cancels the previous task,
whether it is still debouncing or already waiting on the network. A
generation counter drops a result that arrives after a newer trigger.
While a request is pending `visible_suggestion` is None so a stale
suggestion is never shown for the new cursor position.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections import deque
from dataclasses import dataclass
from typing import Callable, Protocol

from ..core.config import get_settings
from ..models import SuggestionRequest

logger = logging.getLogger(__name__)


# ── Rate limiter ──────────────────────────────────────────────────

class RateLimiter:
    """At most `max_requests` in any sliding `window` seconds."""

    def __init__(
        self,
        max_requests: int = 6,
        window: float = 60.0,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.max_requests = max_requests
        self.window = window
        self._clock = clock
        self._timestamps: deque[float] = deque()

    def _evict(self, now: float):
        while self._timestamps and now - self._timestamps[0] >= self.window:
            self._timestamps.popleft()

    def is_limited(self) -> bool:
        self._evict(self._clock())
        return len(self._timestamps) >= self.max_requests

    def record(self):
        self._timestamps.append(self._clock())

    def try_acquire(self) -> bool:
        """Record a request if there is room. False means refused."""
        if self.is_limited():
            return False
        self.record()
        return True

    def __len__(self) -> int:
        self._evict(self._clock())
        return len(self._timestamps)


# ── Editor state ──────────────────────────────────────────────────

@dataclass
class EditorState:
    document: str = ""
    cursor: int = 0
    suggestion: str | None = None

    def __post_init__(self):
        self.cursor = max(0, min(self.cursor, len(self.document)))

    def type_text(self, text: str):
        self.document = self.document[:self.cursor] + text + self.document[self.cursor:]
        self.cursor += len(text)

    def move_cursor(self, position: int):
        self.cursor = max(0, min(position, len(self.document)))

    def accept_suggestion(self) -> bool:
        """Insert the suggestion at the cursor, move past it and clear it."""
        if not self.suggestion:
            return False
        text, self.suggestion = self.suggestion, None
        self.document = self.document[:self.cursor] + text + self.document[self.cursor:]
        self.cursor += len(text)
        return True


def build_suggestion_payload(
    state: EditorState,
    file_name: str,
    context_lines: int = 5,
) -> SuggestionRequest | None:
    """Snapshot around the cursor. None for a blank document."""
    code = state.document
    if not code.strip():
        return None

    cursor = max(0, min(state.cursor, len(code)))
    lines = code.split("\n")
    line_index = code.count("\n", 0, cursor)
    line_start = code.rfind("\n", 0, cursor) + 1
    current_line = lines[line_index]
    cursor_in_line = cursor - line_start

    previous = lines[max(0, line_index - context_lines):line_index]
    following = lines[line_index + 1:line_index + 1 + context_lines]

    return SuggestionRequest(
        file_name=file_name,
        code=code,
        current_line=current_line,
        previous_lines="\n".join(previous),
        text_before_cursor=current_line[:cursor_in_line],
        text_after_cursor=current_line[cursor_in_line:],
        next_lines="\n".join(following),
        line_number=line_index + 1,
    )


# ── Session ───────────────────────────────────────────────────────

class SuggestionFetcher(Protocol):
    async def fetch_suggestion(self, payload: SuggestionRequest) -> str | None: ...


class SuggestionSession:
    """Debounced, superseding, rate-limited suggestions for one editor."""

    def __init__(
        self,
        client: SuggestionFetcher,
        file_name: str,
        state: EditorState | None = None,
        limiter: RateLimiter | None = None,
        debounce: float | None = None,
        context_lines: int | None = None,
    ):
        settings = get_settings()
        self.client = client
        self.file_name = file_name
        self.state = state or EditorState()
        if limiter is None:
            limiter = RateLimiter(settings.suggestion_rate_limit, settings.suggestion_rate_window)
        # May be shared by every session of one editor
        self.limiter = limiter
        self.debounce = settings.suggestion_debounce if debounce is None else debounce
        self.context_lines = settings.suggestion_context_lines if context_lines is None else context_lines
        self.waiting = False
        self._generation = 0
        self._task: asyncio.Task | None = None

    @property
    def visible_suggestion(self) -> str | None:
        return None if self.waiting else self.state.suggestion

    def trigger(self):
        """Call after every edit or cursor move. Needs a running event loop."""
        self._cancel_pending()
        self._generation += 1

        if self.limiter.is_limited():
            logger.debug("[editor] rate limited; suggestion cleared")
            self.waiting = False
            self.state.suggestion = None
            return

        self.waiting = True
        self._task = asyncio.create_task(self._request(self._generation))

    def accept(self) -> bool:
        return self.state.accept_suggestion()

    def _cancel_pending(self):
        if self._task is not None and not self._task.done():
            self._task.cancel()
        self._task = None

    async def _request(self, generation: int):
        if self.debounce > 0:
            await asyncio.sleep(self.debounce)

        if self.limiter.is_limited():
            self._settle(generation, None)
            return

        payload = build_suggestion_payload(self.state, self.file_name, self.context_lines)
        if payload is None:
            self._settle(generation, None)
            return

        self.limiter.record()
        suggestion = await self.client.fetch_suggestion(payload)
        self._settle(generation, suggestion)

    def _settle(self, generation: int, suggestion: str | None):
        if generation != self._generation:
            logger.debug("[editor] dropped superseded suggestion (gen %d)", generation)
            return
        self.waiting = False
        self.state.suggestion = suggestion

    async def wait_idle(self):
        """Wait for the current request (if any) to settle."""
        task = self._task
        if task is None:
            return
        try:
            await task
        except asyncio.CancelledError:
            if not task.cancelled():
                raise

    async def close(self):
        task = self._task
        self._cancel_pending()
        if task is not None:
            await asyncio.gather(task, return_exceptions=True)
        self.waiting = False

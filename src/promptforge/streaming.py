"""Turns provider-specific delta streams into one normalized chunk stream."""

import asyncio
import logging
from dataclasses import dataclass
from typing import AsyncIterator, Optional

from .errors import normalize_error
from .models import ChunkMetadata, ResponseChunk, TextResponse, Usage

logger = logging.getLogger(__name__)


def _first_set(value: Optional[int], fallback: Optional[int]) -> Optional[int]:
    return value if value is not None else fallback


class CancellationToken:
    """One-way flag shared between a stream and whoever may cancel it."""

    def __init__(self):
        self._cancelled = False

    def cancel(self) -> None:
        self._cancelled = True

    @property
    def cancelled(self) -> bool:
        return self._cancelled


@dataclass
class StreamState:
    """Filled in by an adapter's delta iterator as provider events arrive."""

    usage: Optional[Usage] = None
    finish_reason: Optional[str] = None

    def set_usage(
        self,
        prompt_tokens: Optional[int] = None,
        completion_tokens: Optional[int] = None,
        total_tokens: Optional[int] = None,
    ) -> None:
        """Merges counts into the current usage; providers report them piecemeal."""
        current = self.usage or Usage()
        prompt = _first_set(prompt_tokens, current.prompt_tokens)
        completion = _first_set(completion_tokens, current.completion_tokens)
        if total_tokens is None and prompt is not None and completion is not None:
            total_tokens = prompt + completion
        self.usage = Usage(
            prompt_tokens=prompt,
            completion_tokens=completion,
            total_tokens=_first_set(total_tokens, current.total_tokens),
        )


class ChunkStream:
    """Async iterator of ``ResponseChunk`` built over an iterator of text deltas.

    Every non-empty delta becomes a non-terminal chunk. When the source is
    exhausted a single terminal chunk carries the usage and finish reason
    gathered in ``state``. A failure in the source is raised as a normalized
    ``LLMAdapterError`` and nothing is yielded afterwards. Once the token is
    cancelled the stream stops and the source is closed.
    """

    def __init__(
        self,
        deltas: AsyncIterator[str],
        model: str,
        provider_name: str,
        state: Optional[StreamState] = None,
        token: Optional[CancellationToken] = None,
    ):
        self._source = deltas
        self.model = model
        self.provider_name = provider_name
        self.state = state or StreamState()
        self.token = token or CancellationToken()
        self._done = False
        self._closed = False

    def __aiter__(self) -> "ChunkStream":
        return self

    async def __anext__(self) -> ResponseChunk:
        if self._done:
            raise StopAsyncIteration
        while True:
            if self.token.cancelled:
                await self._finish()
                raise StopAsyncIteration
            try:
                delta = await self._source.__anext__()
            except StopAsyncIteration:
                self._done = True
                if self.token.cancelled:
                    raise
                return self._terminal_chunk()
            except asyncio.CancelledError:
                await self._finish()
                raise
            except Exception as exc:
                await self._finish()
                raise normalize_error(exc, self.provider_name) from exc
            if delta and not self.token.cancelled:
                return ResponseChunk(content=delta, is_complete=False)

    def cancel(self) -> None:
        """Stops the stream at the next pull; the source is closed then."""
        self.token.cancel()

    @property
    def done(self) -> bool:
        return self._done

    async def aclose(self) -> None:
        self.token.cancel()
        await self._finish()

    async def collect(self) -> TextResponse:
        """Drains the stream into a single ``TextResponse``."""
        parts = []
        metadata = None
        async for chunk in self:
            if chunk.is_complete:
                metadata = chunk.metadata
            else:
                parts.append(chunk.content)
        return TextResponse(content="".join(parts), metadata=metadata)

    def _terminal_chunk(self) -> ResponseChunk:
        return ResponseChunk(
            content="",
            is_complete=True,
            metadata=ChunkMetadata(
                model=self.model,
                usage=self.state.usage,
                finish_reason=self.state.finish_reason,
            ),
        )

    async def _finish(self) -> None:
        self._done = True
        if self._closed:
            return
        self._closed = True
        aclose = getattr(self._source, "aclose", None)
        if aclose is None:
            return
        try:
            await aclose()
        except RuntimeError:
            # generator still running in another task; it is closed by that task
            logger.debug("Stream source for %s already running; not closed", self.model)

"""Fan-out of one async stream to independent readers.

The HTML response consumes the payload rows twice: once to render markup
and once to embed the rows for the client. ``TeeBuffer`` pulls each chunk
from the source exactly once and keeps it, so every cursor sees the same
sequence at its own pace::

    tee = TeeBuffer(render_payload(tree))
    markup, embed = tee.cursor(), tee.cursor()

    async for row in markup:
        ...
        for pending in embed.take_available():
            ...
"""

from collections.abc import AsyncIterator

import anyio


class TeeBuffer:
    """Shared chunk list over a single-pass async source."""

    __slots__ = ("_chunks", "_done", "_error", "_lock", "_source")

    def __init__(self, source: AsyncIterator[str]) -> None:
        self._source = source
        self._chunks: list[str] = []
        self._done = False
        self._error: BaseException | None = None
        self._lock = anyio.Lock()

    def cursor(self) -> "TeeCursor":
        return TeeCursor(self)

    @property
    def done(self) -> bool:
        return self._done

    async def get(self, index: int) -> str:
        """Chunk *index*, pulling from the source if nobody has yet.

        Raises ``StopAsyncIteration`` past the end, or re-raises the
        source's error to every cursor that reaches it.
        """
        while index >= len(self._chunks):
            if self._error is not None:
                raise self._error
            if self._done:
                raise StopAsyncIteration
            async with self._lock:
                if index < len(self._chunks) or self._done or self._error is not None:
                    continue
                try:
                    chunk = await anext(self._source)
                except StopAsyncIteration:
                    self._done = True
                except Exception as exc:
                    self._error = exc
                    self._done = True
                else:
                    self._chunks.append(chunk)
        return self._chunks[index]

    def buffered(self, start: int) -> list[str]:
        return self._chunks[start:]

    async def aclose(self) -> None:
        aclose = getattr(self._source, "aclose", None)
        if aclose is not None:
            await aclose()


class TeeCursor:
    """One reader's position in a ``TeeBuffer``."""

    __slots__ = ("_buffer", "_index")

    def __init__(self, buffer: TeeBuffer) -> None:
        self._buffer = buffer
        self._index = 0

    def __aiter__(self) -> "TeeCursor":
        return self

    async def __anext__(self) -> str:
        chunk = await self._buffer.get(self._index)
        self._index += 1
        return chunk

    async def aclose(self) -> None:
        """Close the shared source; other cursors see the end of the stream."""
        await self._buffer.aclose()

    def take_available(self) -> list[str]:
        """Chunks already pulled by other cursors, without waiting."""
        chunks = self._buffer.buffered(self._index)
        self._index += len(chunks)
        return chunks

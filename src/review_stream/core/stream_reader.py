# src/review_stream/core/stream_reader.py
"""
Frame a streamed response body into SSE messages.
"""
import codecs
import logging
from typing import AsyncIterator, Callable, Optional

import httpx

from review_stream.errors import StreamInterruptedError

logger = logging.getLogger(__name__)

MESSAGE_DELIMITER = "\n\n"


class SSEStreamReader:
    """
    Pull byte chunks, decode them incrementally and yield complete messages.

    A message is everything up to a blank line. The trailing incomplete
    fragment stays buffered until the next chunk arrives. The reader does not
    interpret message content.
    """

    def __init__(self, encoding: str = "utf-8"):
        self._decoder = codecs.getincrementaldecoder(encoding)(errors="replace")
        self._buffer = ""

    def feed(self, chunk: bytes) -> list:
        """Add a chunk and return the messages it completed."""
        self._buffer += self._decoder.decode(chunk)
        self._buffer = self._buffer.replace("\r\n", "\n")

        messages = self._buffer.split(MESSAGE_DELIMITER)
        # Keep the last, possibly incomplete, message
        self._buffer = messages.pop()
        return [m for m in messages if m.strip()]

    def finish(self) -> Optional[str]:
        """Flush the decoder and return any non-blank leftover fragment."""
        self._buffer += self._decoder.decode(b"", final=True)
        leftover = self._buffer.replace("\r\n", "\n")
        self._buffer = ""
        if leftover.strip():
            return leftover
        return None

    async def messages(
            self,
            chunks: AsyncIterator[bytes],
            is_current: Optional[Callable[[], bool]] = None
    ) -> AsyncIterator[str]:
        """
        Yield messages until the stream is done.

        `is_current` is checked after every read; once it returns False the
        reader stops without yielding the chunk it just received.

        Raises:
            StreamInterruptedError: when reading a chunk fails.
        """
        iterator = chunks.__aiter__()
        while True:
            try:
                chunk = await iterator.__anext__()
            except StopAsyncIteration:
                logger.info("Stream response ended")
                break
            except (httpx.HTTPError, httpx.StreamError, OSError) as e:
                logger.error(f"Failed to read stream: {e}")
                raise StreamInterruptedError(str(e) or e.__class__.__name__) from e

            if is_current is not None and not is_current():
                logger.info("Discarding chunk from a cancelled run")
                return

            logger.debug(f"Received chunk ({len(chunk)} bytes)")
            for message in self.feed(chunk):
                yield message

        leftover = self.finish()
        if leftover is not None:
            logger.debug("Yielding trailing fragment at end of stream")
            yield leftover

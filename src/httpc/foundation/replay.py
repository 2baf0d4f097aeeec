"""Request body replay buffer.

A request body is read from its source exactly once, before the first
attempt, and kept in memory. Every later attempt sends a fresh view over
the same bytes, so a streamed body is never consumed twice and every
attempt carries identical bytes.

Memory use is bounded by the request body size: large bodies are not
streamed while retries are enabled.
"""

import attrs
import httpx

from httpc.exceptions import CopyError


@attrs.define(frozen=True, slots=True)
class ReplayBuffer:
    """In-memory copy of a request body.

    Attributes:
        content: The captured body bytes.

    Example:
        ```python
        buffer = await ReplayBuffer.capture(request)
        response = await transport.handle_async_request(request)
        # ... later attempt
        response = await transport.handle_async_request(buffer.rewind(request))
        ```
    """

    content: bytes

    @classmethod
    async def capture(cls, request: httpx.Request) -> "ReplayBuffer":
        """Materialize the body of `request` into memory.

        After capture, `request` itself streams from the in-memory copy, so
        it is safe to send it for the first attempt.

        Args:
            request: Outbound request whose body is captured.

        Returns:
            Buffer holding the complete body.

        Raises:
            CopyError: If reading the body fails. Nothing has been sent.
        """
        try:
            content = await request.aread()
        except Exception as e:
            msg = f"error copying request body for retry: {e}"
            raise CopyError(msg) from e
        return cls(content)

    def rewind(self, request: httpx.Request) -> httpx.Request:
        """Return a copy of `request` whose body replays the captured bytes.

        Args:
            request: Request to copy. Method, URL, headers and extensions
                are carried over unchanged.

        Returns:
            New request streaming from the buffer.
        """
        return httpx.Request(
            request.method,
            request.url,
            headers=request.headers,
            stream=httpx.ByteStream(self.content),
            extensions=request.extensions,
        )

    def __len__(self) -> int:
        return len(self.content)

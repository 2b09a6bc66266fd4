"""Response types with guaranteed post-send hooks."""

from __future__ import annotations

from collections.abc import Callable
from typing import Any

from starlette.requests import ClientDisconnect
from starlette.responses import StreamingResponse
from starlette.types import Receive, Scope, Send


class ReleasingStreamingResponse(StreamingResponse):
    """Streaming response that always runs ``on_close`` once the ASGI call ends.

    The hook runs after a full drain, a client disconnect, a cancellation or an
    error while sending, and receives ``failed=True`` only for the latter.
    """

    def __init__(self, content: Any, *, on_close: Callable[..., None], **kwargs: Any) -> None:
        super().__init__(content, **kwargs)
        self._on_close = on_close

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        failed = False
        try:
            await super().__call__(scope, receive, send)
        except ClientDisconnect:
            raise
        except Exception:
            failed = True
            raise
        finally:
            self._on_close(failed=failed)

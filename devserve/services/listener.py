from __future__ import annotations

import errno
import logging
import socket
from collections.abc import Callable
from dataclasses import dataclass

import uvicorn
from tenacity import AsyncRetrying, RetryError, retry_if_exception, stop_after_attempt

log = logging.getLogger(__name__)


class PortExhaustedError(RuntimeError):
    pass


class BaseListener:
    """One server instance that can be bound to a single port at most once."""

    async def bind(self, port: int) -> int:
        """Bind and start listening; return the port actually bound."""
        raise NotImplementedError

    async def serve(self) -> None:
        raise NotImplementedError

    def close(self) -> None:
        raise NotImplementedError


@dataclass(frozen=True)
class BoundListener:
    listener: BaseListener
    port: int


class UvicornListener(BaseListener):
    def __init__(
        self,
        app,
        *,
        host: str = "0.0.0.0",
        ssl_keyfile: str | None = None,
        ssl_certfile: str | None = None,
    ) -> None:
        self.config = uvicorn.Config(
            app,
            host=host,
            lifespan="off",
            # Logging is configured by devserve.core.logging.
            log_config=None,
            access_log=False,
            ssl_keyfile=ssl_keyfile,
            ssl_certfile=ssl_certfile,
        )
        self.server = uvicorn.Server(self.config)
        self.sock: socket.socket | None = None

    async def bind(self, port: int) -> int:
        # Loading builds the SSL context, so bad key/cert files fail here
        # (as a non-retryable OSError) instead of inside serve().
        if not self.config.loaded:
            self.config.load()

        family = socket.AF_INET6 if ":" in self.config.host else socket.AF_INET
        sock = socket.socket(family, socket.SOCK_STREAM)
        try:
            sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
            sock.bind((self.config.host, port))
            sock.listen(self.config.backlog)
        except OSError:
            sock.close()
            raise
        sock.set_inheritable(True)

        self.sock = sock
        self.config.port = sock.getsockname()[1]
        return self.config.port

    async def serve(self) -> None:
        if self.sock is None:
            raise RuntimeError("listener is not bound")
        await self.server.serve(sockets=[self.sock])

    def close(self) -> None:
        if self.sock is not None:
            self.sock.close()
            self.sock = None


def is_addr_in_use(exc: BaseException) -> bool:
    return isinstance(exc, OSError) and exc.errno == errno.EADDRINUSE


async def listen_with_retry(
    factory: Callable[[], BaseListener],
    preferred_port: int,
    *,
    max_attempts: int = 10,
    step: int = 1,
    label: str = "Server",
) -> BoundListener:
    """Bind a fresh listener, moving to the next port while the current one is taken.

    Candidate ports are preferred_port + n * step for n in range(max_attempts).
    Only "address already in use" is retried; any other bind error propagates
    immediately. A listener whose bind failed is closed and never reused.

    Raises PortExhaustedError when every candidate port is taken.
    """
    if max_attempts < 1:
        raise ValueError("max_attempts must be >= 1")

    retrying = AsyncRetrying(
        stop=stop_after_attempt(max_attempts),
        retry=retry_if_exception(is_addr_in_use),
        reraise=False,
    )

    try:
        async for attempt in retrying:
            with attempt:
                port = preferred_port + (attempt.retry_state.attempt_number - 1) * step
                listener = factory()
                try:
                    actual_port = await listener.bind(port)
                except OSError as e:
                    listener.close()
                    if is_addr_in_use(e):
                        log.debug("%s port %s in use", label, port)
                    raise
    except RetryError as e:
        raise PortExhaustedError(
            f"{label} failed to find an open port "
            f"(starting at {preferred_port}, {max_attempts} attempts)"
        ) from e.last_attempt.exception()

    if preferred_port and actual_port != preferred_port:
        log.warning("%s port %s in use, switched to %s", label, preferred_port, actual_port)

    return BoundListener(listener=listener, port=actual_port)

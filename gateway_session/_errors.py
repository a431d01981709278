from typing import List, Optional, Tuple

from wsproto.events import RejectConnection

__all__ = (
    'GatewayError',
    'ConnectionClosed',
    'ConnectionRejected',
    'ResolveError',
    'SessionFailed',
    'InvalidSessionError',
    'DisconnectedError',
    'ReconnectError',
)


class GatewayError(Exception):
    """Base class for all exceptions raised by gateway_session."""


class ConnectionClosed(GatewayError):
    """Raised by `WebSocketProtocol.receive()` when the WebSocket has closed.

    Attributes:
        code:
            The close code, ours if we started the closing handshake and
            otherwise the one the peer sent.
        reason: Close reason given by the peer, if any.
        data:
            The reply to the peer's close frame, which has to be written
            before the TCP stream is closed. None when the handshake is
            already complete.
    """

    code: Optional[int]
    reason: Optional[str]

    data: Optional[bytes]

    def __init__(
        self,
        data: Optional[bytes],
        code: Optional[int] = None,
        reason: Optional[str] = None
    ) -> None:
        message = 'WebSocket closed'
        if code is not None:
            message += f' with code {code}'
        if reason:
            message += f' ({reason})'
        super().__init__(message)

        self.code = code
        self.reason = reason

        self.data = data


class ConnectionRejected(GatewayError):
    """Exception raised when the WebSocket upgrade was rejected.

    The gateway answered the upgrade request with a regular HTTP response,
    which usually means the URL is wrong or the endpoint is unavailable.
    """

    code: int
    headers: List[Tuple[bytes, bytes]]

    def __init__(self, event: RejectConnection) -> None:
        super().__init__(
            f'The gateway rejected the WebSocket connection - Error code {event.status_code}'
        )

        self.code = event.status_code
        self.headers = event.headers


class ResolveError(GatewayError):
    """Exception raised when the gateway endpoint couldn't be resolved.

    `status` is the HTTP status of the response, or None when no usable
    response was received at all.
    """

    status: Optional[int]

    def __init__(self, status: Optional[int], message: Optional[str] = None) -> None:
        if status is not None:
            text = f'Failed to resolve gateway endpoint - HTTP {status}'
        else:
            text = 'Failed to resolve gateway endpoint'

        super().__init__(f"{text}{': ' + message if message else ''}")

        self.status = status
        self.message = message


class SessionFailed(GatewayError):
    """Terminal failure of a session.

    Once this has been reported through `EventSink.on_fatal_error()` the
    session will not reconnect on its own. It is up to the owner to create a
    new session.
    """


class InvalidSessionError(SessionFailed):
    """The gateway invalidated the session and it cannot be resumed."""

    def __init__(self) -> None:
        super().__init__('The gateway invalidated the session (not resumable)')


class DisconnectedError(SessionFailed):
    """The socket was closed with a code that isn't safe to reconnect after."""

    code: Optional[int]
    reason: Optional[str]

    def __init__(self, code: Optional[int], reason: Optional[str] = None) -> None:
        super().__init__(
            f'Disconnected with close code {code}'
            f"{' - ' + reason if reason else ''}"
        )

        self.code = code
        self.reason = reason


class ReconnectError(SessionFailed):
    """Reconnecting failed with an error that retrying won't fix.

    The original exception is available as `error` and `__cause__`.
    """

    error: BaseException

    def __init__(self, error: BaseException) -> None:
        super().__init__(f'Reconnecting failed: {error!r}')

        self.error = error
        self.__cause__ = error

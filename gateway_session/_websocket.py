from collections import deque
from typing import Deque, Generator, List, Optional, Tuple, Union
from urllib.parse import urlsplit

from wsproto import ConnectionType, WSConnection
from wsproto.connection import ConnectionState
from wsproto.events import (
    BytesMessage, CloseConnection, Ping, RejectConnection, Request,
    TextMessage
)

from ._errors import ConnectionClosed, ConnectionRejected

__all__ = ('WebSocketProtocol',)


class WebSocketProtocol:
    """Sans-I/O client side of one WebSocket connection.

    This wraps a `wsproto.WSConnection` object and only deals in bytes, the
    network layer is `WebSocketTransport`. Complete messages are reassembled
    from their frames and can be consumed with `messages()`.

    Attributes:
        host: Host name to open a TCP socket to.
        port: Port to open a TCP socket to.
        secure: Whether TLS should be used (wss).
        target: Path and query string of the upgrade request.
        close_code: The close code sent by us, if we initiated the closing.
    """

    host: str
    port: int
    secure: bool
    target: str

    close_code: Optional[int]

    __slots__ = (
        'host', 'port', 'secure', 'target', 'close_code', '_proto',
        '_messages', '_text_buffer', '_bytes_buffer',
    )

    def __init__(self, url: str) -> None:
        """Initialize the protocol for a URL.

        Parameters:
            url:
                URL to open a WebSocket to. A missing scheme is assumed to be
                'wss' as the gateway only uses secure WebSockets.
        """
        if '://' not in url:
            url = 'wss://' + url

        parts = urlsplit(url)

        self.secure = parts.scheme != 'ws'
        self.host = parts.hostname or ''
        self.port = parts.port or (443 if self.secure else 80)

        self.target = parts.path or '/'
        if parts.query:
            self.target += '?' + parts.query

        self.close_code = None

        self._proto = WSConnection(ConnectionType.CLIENT)
        self._messages: Deque[Union[str, bytes]] = deque()

        self._text_buffer = ''
        self._bytes_buffer = bytearray()

    @property
    def destination(self) -> Tuple[str, int]:
        """The host and port to open a TCP socket to."""
        return self.host, self.port

    @property
    def open(self) -> bool:
        """Whether the upgrade finished and messages can be sent."""
        return self._proto.state == ConnectionState.OPEN

    @property
    def closing(self) -> bool:
        """Whether a closing handshake is in progress or has finished."""
        return self._proto.state in {
            ConnectionState.CLOSED, ConnectionState.LOCAL_CLOSING,
            ConnectionState.REMOTE_CLOSING
        }

    def connect(self) -> bytes:
        """Generate the bytes of the HTTP upgrade request."""
        return self._proto.send(Request(host=self.host, target=self.target))

    def send(self, data: str) -> bytes:
        """Generate the bytes of a text message."""
        return self._proto.send(TextMessage(data=data))

    def close(self, code: int) -> bytes:
        """Generate the bytes to send a closing frame.

        After having sent this you should continue receiving bytes and calling
        `receive()` until `ConnectionClosed` is raised at which point the TCP
        socket should be closed.
        """
        self.close_code = code
        return self._proto.send(CloseConnection(code))

    def messages(self) -> Generator[Union[str, bytes], None, None]:
        """Generator that yields complete messages which have been received.

        This consumes an internal deque so that messages are removed when
        retrieved.
        """
        while True:
            try:
                yield self._messages.popleft()
            except IndexError:
                return

    def receive(self, data: Optional[bytes]) -> List[bytes]:
        """Receive data from the TCP socket.

        Parameters:
            data: The bytes received, None or empty bytes for end of stream.

        Raises:
            ConnectionRejected: The gateway refused the upgrade.
            ConnectionClosed: The WebSocket closed and so should the socket.

        Returns:
            A list of bytes to respond back with, such as PONGs.
        """
        # WSProto uses None instead of an empty byte string.
        if data is not None and len(data) == 0:
            data = None

        self._proto.receive_data(data)

        res = []

        for event in self._proto.events():
            if isinstance(event, Ping):
                # Once our close frame is out nothing else may be sent
                if self._proto.state == ConnectionState.OPEN:
                    res.append(self._proto.send(event.response()))

            elif isinstance(event, RejectConnection):
                raise ConnectionRejected(event)

            elif isinstance(event, CloseConnection):
                # Report our own code if we initiated the closing
                code = self.close_code if self.close_code is not None else event.code

                if self._proto.state == ConnectionState.CLOSED:
                    # Either this is the reply to our closing frame, or the
                    # stream ended without any closing handshake.
                    raise ConnectionClosed(None, code, event.reason)
                else:
                    # It should be ConnectionState.REMOTE_CLOSING and we need
                    # to reply to the closure
                    raise ConnectionClosed(self._proto.send(event.response()), code, event.reason)

            elif isinstance(event, TextMessage):
                self._text_buffer += event.data

                if event.message_finished:
                    self._messages.append(self._text_buffer)
                    self._text_buffer = ''

            elif isinstance(event, BytesMessage):
                self._bytes_buffer.extend(event.data)

                if event.message_finished:
                    self._messages.append(bytes(self._bytes_buffer))
                    self._bytes_buffer = bytearray()

        return res

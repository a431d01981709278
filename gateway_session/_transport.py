import abc
import asyncio
import logging
import ssl
from typing import Callable, Optional, Union

from wsproto.utilities import LocalProtocolError, RemoteProtocolError

from ._errors import ConnectionClosed, ConnectionRejected
from ._opcode import CloseCode
from ._websocket import WebSocketProtocol

__all__ = (
    'MessageHandler',
    'CloseHandler',
    'Transport',
    'WebSocketTransport',
)


_log = logging.getLogger(__name__)


MessageHandler = Callable[[Union[str, bytes]], None]
CloseHandler = Callable[[Optional[int]], None]


class Transport(abc.ABC):
    """Full-duplex message channel owned by exactly one session.

    Listeners are registered with `attach()` before `open()` is awaited so
    that no early message can be missed. The close listener fires at most
    once, and no listener fires after `detach()`.
    """

    url: str

    def __init__(self, url: str) -> None:
        self.url = url

        self._on_message: Optional[MessageHandler] = None
        self._on_close: Optional[CloseHandler] = None
        self._close_emitted = False

    def attach(self, on_message: MessageHandler, on_close: CloseHandler) -> None:
        self._on_message = on_message
        self._on_close = on_close

    def detach(self) -> None:
        self._on_message = None
        self._on_close = None

    def _emit_message(self, message: Union[str, bytes]) -> None:
        if self._on_message is not None:
            self._on_message(message)

    def _emit_close(self, code: Optional[int]) -> None:
        if self._close_emitted:
            return
        self._close_emitted = True

        if self._on_close is not None:
            self._on_close(code)

    @abc.abstractmethod
    async def open(self) -> None:
        """Open the underlying connection."""

    @abc.abstractmethod
    def send(self, data: str) -> None:
        """Write one text message.

        This never raises, messages sent to a socket that isn't open are
        dropped.
        """

    @abc.abstractmethod
    def close(self, code: int) -> None:
        """Start closing the connection with a close code.

        The close listener fires once the connection has been closed.
        """


class WebSocketTransport(Transport):
    """WebSocket over an asyncio stream, framed by `wsproto`."""

    def __init__(
        self,
        url: str,
        *,
        ssl_context: Optional[ssl.SSLContext] = None,
        close_timeout: float = 5.0,
        read_size: int = 65536,
    ) -> None:
        """Initialize the transport, nothing is opened until `open()`.

        Parameters:
            url: The complete WebSocket URL including query parameters.
            ssl_context: TLS context to use for 'wss' URLs.
            close_timeout:
                Seconds to wait for the server to answer our closing frame
                before the TCP stream is aborted.
            read_size: Maximum amount of bytes to read at once.
        """
        super().__init__(url)

        self.close_timeout = close_timeout
        self.read_size = read_size

        self._proto = WebSocketProtocol(url)
        self._ssl = ssl_context

        self._reader: Optional[asyncio.StreamReader] = None
        self._writer: Optional[asyncio.StreamWriter] = None
        self._task: Optional[asyncio.Task] = None
        self._abort_handle: Optional[asyncio.TimerHandle] = None

    async def open(self) -> None:
        host, port = self._proto.destination

        ssl_context = None
        if self._proto.secure:
            ssl_context = self._ssl or ssl.create_default_context()

        self._reader, self._writer = await asyncio.open_connection(
            host, port, ssl=ssl_context
        )
        self._writer.write(self._proto.connect())

        self._task = asyncio.get_running_loop().create_task(self._read_loop())

    async def wait_closed(self) -> None:
        """Wait until the read loop has finished and the stream is closed."""
        if self._task is not None:
            await asyncio.shield(self._task)

    def _write(self, data: Optional[bytes]) -> None:
        if data and self._writer is not None and not self._writer.is_closing():
            self._writer.write(data)

    def send(self, data: str) -> None:
        if not self._proto.open:
            _log.debug('Dropping message sent to a WebSocket that is not open')
            return

        self._write(self._proto.send(data))

    def close(self, code: int) -> None:
        if self._proto.open:
            self._write(self._proto.close(code))

            loop = asyncio.get_running_loop()
            self._abort_handle = loop.call_later(self.close_timeout, self._abort)
        else:
            # Nothing to perform a closing handshake on, drop the stream.
            self._proto.close_code = code
            self._abort()

    def _abort(self) -> None:
        if self._writer is not None:
            self._writer.close()
        elif not self._close_emitted:
            # Never opened, there is no read loop to report the closure
            self._emit_close(self._proto.close_code)

    def _dispatch_messages(self) -> None:
        for message in self._proto.messages():
            try:
                self._emit_message(message)
            except Exception:
                _log.exception('Unhandled exception while handling a message')

    async def _read_loop(self) -> None:
        code: Optional[int] = CloseCode.ABNORMAL

        try:
            while True:
                data = await self._reader.read(self.read_size)

                try:
                    responses = self._proto.receive(data)
                except ConnectionClosed as exc:
                    # Messages that arrived ahead of the close frame
                    self._dispatch_messages()

                    self._write(exc.data)
                    code = exc.code
                    _log.debug('WebSocket closed with code %s', code)
                    return

                for response in responses:
                    self._write(response)

                self._dispatch_messages()

                if not data:
                    return
        except ConnectionRejected as exc:
            # No WebSocket was ever opened, this is reported as an abnormal
            # closure and not as a missing close code.
            _log.error('%s', exc)
        except (LocalProtocolError, RemoteProtocolError) as exc:
            _log.warning('WebSocket protocol error: %s', exc)
        except OSError as exc:
            _log.warning('Connection lost: %s', exc)
        finally:
            if self._abort_handle is not None:
                self._abort_handle.cancel()
                self._abort_handle = None

            if self._proto.close_code is not None:
                code = self._proto.close_code

            self._writer.close()
            self._emit_close(code)

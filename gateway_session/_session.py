import asyncio
import enum
import logging
import random
from functools import partial
from typing import (
    Any, Callable, Dict, Iterable, Optional, Protocol, Tuple, Union
)
from urllib.parse import urlencode

from ._errors import (
    DisconnectedError, GatewayError, InvalidSessionError, ReconnectError,
    SessionFailed
)
from ._heartbeat import Heartbeat
from ._opcode import CloseCode, Opcode, should_reconnect
from ._payload import (
    Frame, FrameDecoder, encode_frame, identify_payload, resume_payload
)
from ._resolver import Resolver
from ._transport import Transport, WebSocketTransport

__all__ = (
    'SessionState',
    'EventSink',
    'GatewaySession',
)


_log = logging.getLogger(__name__)


API_VERSION = 10

# Anything but 1000 and 1001 keeps the session resumable
RECONNECT_CLOSE_CODE = CloseCode.UNKNOWN_ERROR
DEAD_CONNECTION_CLOSE_CODE = CloseCode.UNKNOWN_ERROR
NORMAL_CLOSE_CODE = CloseCode.NORMAL


class SessionState(enum.Enum):
    DISCONNECTED = 'disconnected'
    CONNECTING = 'connecting'
    AWAITING_HELLO = 'awaiting_hello'
    HANDSHAKING = 'handshaking'
    ESTABLISHED = 'established'
    FAILED = 'failed'


class EventSink(Protocol):
    """Receiver of everything a session publishes to its owner."""

    def on_event(self, type: str, payload: Any) -> None:
        """Called for every dispatched event, in the order received."""

    def on_fatal_error(self, reason: SessionFailed) -> None:
        """Called once when the session fails and won't reconnect."""


class GatewaySession:
    """One logical session with the gateway.

    The session owns at most one transport at a time. It answers the
    gateway's control frames, keeps the connection alive with heartbeats and
    transparently RESUMEs after a dropped connection. Dispatched events are
    forwarded to the event sink.

    The sequence cursor never moves backwards while a session lives, frames
    with a lower `s` than the cursor leave it as is. Sending IDENTIFY is the
    one exception: the gateway starts a new session numbered from 1, so the
    cursor and session ID of the old session are cleared at that point.

    Attributes:
        state: Current state of the session.
        connect_url: URL fresh connections are opened to.
        resume_url: URL connections that RESUME are opened to.
        session_id: The session ID from the READY event.
        sequence: Highest sequence number received, used when resuming.
        heartbeat: The heartbeat timer of the current connection.
    """

    state: SessionState

    connect_url: Optional[str]
    resume_url: Optional[str]
    session_id: Optional[str]
    sequence: Optional[int]

    heartbeat: Heartbeat

    def __init__(
        self,
        token: str,
        *,
        resolver: Resolver,
        sink: EventSink,
        intents: Iterable[int] = (),
        properties: Optional[Dict[str, Any]] = None,
        compress: Union[str, bool] = True,
        large_threshold: Optional[int] = None,
        shard: Optional[Tuple[int, int]] = None,
        presence: Optional[Dict[str, Any]] = None,
        transport_factory: Callable[[str], Transport] = WebSocketTransport,
        max_reconnect_delay: float = 60.0,
        jitter: Callable[[], float] = random.random,
    ) -> None:
        """Initialize a gateway session, nothing connects until `connect()`.

        Parameters:
            token: The authorization token used to IDENTIFY and RESUME.
            resolver: Supplies the URL to open fresh connections to.
            sink: Receives dispatched events and fatal errors.
            intents: Capability flags, combined with bitwise OR when IDENTIFYing.
            properties: Properties about the connection sent in IDENTIFY.
            compress:
                True for payload compression, 'zlib-stream' for transport
                compression or False for none at all.
            large_threshold: Sent in IDENTIFY when not None.
            shard: Two-integer tuple of the shard ID and count, if sharding.
            presence: Initial presence sent in IDENTIFY.
            transport_factory: Creates a transport for a complete URL.
            max_reconnect_delay:
                Upper bound in seconds of the back-off between automatic
                reconnection attempts. The first attempt after a connection
                drops is immediate, every further attempt before READY or
                RESUMED is received again waits twice as long as the last.
            jitter:
                Returns a fraction in `[0, 1)` of the heartbeat interval to
                wait before the first heartbeat.
        """
        self._token = token
        self._resolver = resolver
        self._sink = sink

        self.intents = tuple(intents)
        self.properties = properties
        self.compress = compress
        self.large_threshold = large_threshold
        self.shard = shard
        self.presence = presence

        self._transport_factory = transport_factory
        self.max_reconnect_delay = max_reconnect_delay

        self.state = SessionState.DISCONNECTED

        self.connect_url = None
        self.resume_url = None
        self.session_id = None
        self.sequence = None

        self.heartbeat = Heartbeat(
            self._send_heartbeat, self._heartbeat_missed, jitter=jitter
        )

        self._transport: Optional[Transport] = None
        self._decoder: Optional[FrameDecoder] = None

        self._resuming = False
        self._handshake_sent = False
        self._shutdown = False

        self._reconnect_task: Optional[asyncio.Task] = None
        self._reconnect_attempts = 0
        self._closed_event: Optional[asyncio.Event] = None

    def __repr__(self) -> str:
        return (
            f'<GatewaySession state={self.state.value} '
            f'session_id={self.session_id!r} sequence={self.sequence}>'
        )

    @property
    def acknowledged(self) -> bool:
        """Whether the last heartbeat sent was acknowledged."""
        return self.heartbeat.acknowledged

    @property
    def can_resume(self) -> bool:
        """Whether there is a previous session to RESUME."""
        return self.session_id is not None and self.resume_url is not None

    @property
    def closed(self) -> bool:
        """Whether the session failed, or was shut down and released its socket."""
        return self.state is SessionState.FAILED or (
            self._shutdown and self._transport is None
        )

    @property
    def query_params(self) -> str:
        """Query parameters to add to the URL depending on values chosen."""
        quote = {'v': API_VERSION, 'encoding': 'json'}
        if self.compress == 'zlib-stream':
            quote['compress'] = self.compress
        return urlencode(quote)

    def _gateway_url(self, url: str) -> str:
        return url.rstrip('/') + '/?' + self.query_params

    def _release(self) -> Optional[Transport]:
        """Stop the heartbeat and detach the current transport.

        The transport isn't closed, it is returned for the caller to decide.
        """
        self.heartbeat.stop()

        transport, self._transport = self._transport, None
        if transport is not None:
            transport.detach()

        return transport

    def _set_closed(self) -> None:
        if self._closed_event is not None:
            self._closed_event.set()
            self._closed_event = None

    async def connect(self, resume: bool = False) -> None:
        """Open a new connection to the gateway.

        A fresh connection resolves the endpoint first and IDENTIFYs once
        HELLO is received, a resumed connection goes to the URL from READY and
        RESUMEs instead.

        Parameters:
            resume:
                Whether to RESUME the previous session. This falls back to a
                fresh connection if there is nothing to resume.

        Raises:
            SessionFailed: The session has already failed.
            ResolveError: The endpoint couldn't be resolved.
            OSError: The connection couldn't be opened.
        """
        if self.state is SessionState.FAILED:
            raise SessionFailed('Cannot connect a session that has failed')

        self._shutdown = False

        if resume and not self.can_resume:
            _log.info('No session to resume, connecting with a new session')
            resume = False

        previous = self._release()
        if previous is not None:
            previous.close(RECONNECT_CLOSE_CODE)

        self.state = SessionState.CONNECTING

        try:
            if not resume:
                info = await self._resolver.resolve()
                self.connect_url = self.resume_url = info.url

                if self._shutdown or self.state is not SessionState.CONNECTING:
                    return

            url = self.resume_url if resume else self.connect_url

            transport = self._transport_factory(self._gateway_url(url))
            transport.attach(
                partial(self._on_message, transport),
                partial(self._on_close, transport),
            )

            self._transport = transport
            self._decoder = FrameDecoder(self.compress)
            self._resuming = resume
            self._handshake_sent = False

            _log.info('Connecting to %s (resume=%s)', url, resume)
            await transport.open()
        except BaseException:
            if self.state is SessionState.CONNECTING:
                self._release()
                self.state = SessionState.DISCONNECTED
            raise

        if self._transport is not transport:
            # Shut down or replaced while opening, nothing listens to it anymore
            transport.close(NORMAL_CLOSE_CODE if self._shutdown else RECONNECT_CLOSE_CODE)
            return

        # The connection may already have been closed while opening
        if self.state is SessionState.CONNECTING:
            self.state = SessionState.AWAITING_HELLO

    async def close(self, code: int = NORMAL_CLOSE_CODE) -> None:
        """Shut down the session.

        Automatic reconnection is disabled until `connect()` is called
        again. Closing with 1000 (the default) invalidates the session on the
        gateway's end, so it can't be resumed afterwards.
        """
        self._shutdown = True
        self._reconnect_attempts = 0

        if self._reconnect_task is not None:
            self._reconnect_task.cancel()
            self._reconnect_task = None

        self.heartbeat.stop()
        if self.state is not SessionState.FAILED:
            self.state = SessionState.DISCONNECTED

        if self._transport is not None:
            self._transport.close(code)
        else:
            self._set_closed()

    async def wait_closed(self) -> None:
        """Wait until the session has failed or finished shutting down."""
        while not self.closed:
            if self._closed_event is None:
                self._closed_event = asyncio.Event()
            await self._closed_event.wait()

    def send(
        self,
        op: int,
        data: Any = None,
        type: Optional[str] = None,
        seq: Optional[int] = None,
    ) -> None:
        """Send one frame to the gateway.

        Nothing is sent, and no error raised, if no socket is attached.
        """
        if self._transport is None:
            _log.debug('Dropping op %s, no socket attached', op)
            return

        self._transport.send(encode_frame(op, data, type, seq))

    def _close(self, code: int) -> None:
        """Close the current socket, its close handler decides what follows."""
        self.heartbeat.stop()

        if self.state is not SessionState.FAILED:
            self.state = SessionState.DISCONNECTED

        if self._transport is not None:
            self._transport.close(code)

    def _fail(self, reason: SessionFailed) -> None:
        if self.state is SessionState.FAILED:
            return

        _log.error('Session failed: %s', reason)

        self.state = SessionState.FAILED
        self.heartbeat.stop()
        self._set_closed()

        self._sink.on_fatal_error(reason)

    def _send_heartbeat(self) -> None:
        self.send(Opcode.HEARTBEAT, self.sequence)

    def _heartbeat_missed(self) -> None:
        self._close(DEAD_CONNECTION_CLOSE_CODE)

    def _identify(self) -> None:
        # IDENTIFYing starts a new session, the old one is unusable now
        self.session_id = None
        self.sequence = None

        _log.info('Identifying with a new session')
        self.send(Opcode.IDENTIFY, identify_payload(
            self._token,
            intents=self.intents,
            properties=self.properties,
            compress=self.compress is True,
            large_threshold=self.large_threshold,
            shard=self.shard,
            presence=self.presence,
        ))

    def _resume(self) -> None:
        _log.info('Resuming session %s at sequence %s', self.session_id, self.sequence)
        self.send(Opcode.RESUME, resume_payload(self._token, self.session_id, self.sequence))

    def _on_message(self, transport: Transport, message: Union[str, bytes]) -> None:
        if transport is not self._transport or self._decoder is None:
            return

        if self.state in {SessionState.DISCONNECTED, SessionState.FAILED}:
            # We are closing this socket, late frames are stale
            return

        frame = self._decoder.decode(message)
        if frame is not None:
            self.handle_frame(frame)

    def handle_frame(self, frame: Frame) -> None:
        """Handle one decoded frame from the gateway."""
        seq = frame.get('s')
        if isinstance(seq, int) and (self.sequence is None or seq > self.sequence):
            self.sequence = seq

        op = frame['op']

        if op == Opcode.HEARTBEAT:
            # The gateway wants a heartbeat right away, this is not a tick of
            # our own timer and doesn't expect an acknowledgement.
            self.send(Opcode.HEARTBEAT, self.sequence)

        elif op == Opcode.HEARTBEAT_ACK:
            self.heartbeat.ack()

        elif op == Opcode.HELLO:
            self._handle_hello(frame['d'])

        elif op == Opcode.RECONNECT:
            _log.info('Gateway requested a reconnect')
            self._close(RECONNECT_CLOSE_CODE)

        elif op == Opcode.INVALID_SESSION:
            if frame['d']:
                _log.info('Session invalidated, resuming')
                self._close(RECONNECT_CLOSE_CODE)
            else:
                self.session_id = None
                self._fail(InvalidSessionError())
                if self._transport is not None:
                    self._transport.close(NORMAL_CLOSE_CODE)

        elif op == Opcode.DISPATCH:
            self._handle_dispatch(frame)

        else:
            _log.debug('Ignoring unknown op code %s', op)

    def _handle_hello(self, data: Any) -> None:
        try:
            interval = data['heartbeat_interval']
        except (KeyError, TypeError):
            _log.warning('Dropping HELLO without a heartbeat interval')
            return

        self.heartbeat.start(interval)

        if self._handshake_sent:
            return
        self._handshake_sent = True

        self.state = SessionState.HANDSHAKING
        if self._resuming:
            self._resume()
        else:
            self._identify()

    def _handle_dispatch(self, frame: Frame) -> None:
        event = frame['t']
        if not event:
            return

        if event == 'READY':
            data = frame['d'] or {}
            self.session_id = data.get('session_id')
            self.resume_url = data.get('resume_gateway_url') or self.resume_url
            self.state = SessionState.ESTABLISHED
            self._reconnect_attempts = 0
            _log.info('Session %s is ready', self.session_id)

        elif event == 'RESUMED':
            self.state = SessionState.ESTABLISHED
            self._reconnect_attempts = 0
            _log.info('Session %s resumed at sequence %s', self.session_id, self.sequence)

        self._sink.on_event(event, frame['d'])

    def _on_close(self, transport: Transport, code: Optional[int]) -> None:
        if transport is not self._transport:
            return

        self._release()

        if self.state is SessionState.FAILED:
            return

        self.state = SessionState.DISCONNECTED

        if self._shutdown:
            _log.info('Connection closed with code %s', code)
            self._set_closed()
            return

        if should_reconnect(code):
            _log.info('Connection closed with code %s, reconnecting', code)
            loop = asyncio.get_running_loop()
            self._reconnect_task = loop.create_task(self._reconnect())
        else:
            self._fail(DisconnectedError(code))

    async def _reconnect(self) -> None:
        while True:
            if self._reconnect_attempts:
                # Connections keep failing or dropping before READY/RESUMED
                delay = min(self.max_reconnect_delay, 2 ** (self._reconnect_attempts - 1))
                delay *= random.uniform(0.5, 1)

                _log.info('Reconnecting in %.2fs (attempt %s)', delay, self._reconnect_attempts + 1)
                await asyncio.sleep(delay)

            if self._shutdown or self.state is not SessionState.DISCONNECTED:
                return

            self._reconnect_attempts += 1
            try:
                await self.connect(resume=True)
                return
            except (OSError, GatewayError) as exc:
                _log.warning('Reconnecting failed: %s', exc)
            except Exception as exc:
                self._fail(ReconnectError(exc))
                return

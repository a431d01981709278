import functools
import logging
import operator
import zlib
from typing import (
    Any, Dict, Iterable, Optional, Tuple, TypedDict, Union
)

from ._opcode import Opcode

try:
    from ujson import dumps as json_dumps
    from ujson import loads as json_loads
except ImportError:
    from json import dumps as json_dumps
    from json import loads as json_loads


__all__ = (
    'Frame',
    'FrameDecoder',
    'encode_frame',
    'identify_payload',
    'resume_payload',
)


_log = logging.getLogger(__name__)

ZLIB_SUFFIX = b'\x00\x00\xff\xff'


class Frame(TypedDict):
    op: int
    d: Any
    t: Optional[str]
    s: Optional[int]


def encode_frame(
    op: int,
    data: Any = None,
    type: Optional[str] = None,
    seq: Optional[int] = None,
) -> str:
    """Serialize one frame to the text sent over the WebSocket.

    All four keys are always present, absent values are serialized as null.
    """
    return json_dumps({'op': int(op), 'd': data, 't': type, 's': seq})


def identify_payload(
    token: str,
    *,
    intents: Iterable[int] = (),
    properties: Optional[Dict[str, Any]] = None,
    compress: bool = True,
    large_threshold: Optional[int] = None,
    shard: Optional[Tuple[int, int]] = None,
    presence: Optional[Dict[str, Any]] = None,
) -> Dict[str, Any]:
    """Build the data of an IDENTIFY command.

    Parameters:
        token: The authorization token to IDENTIFY with.
        intents: Capability flags, combined with bitwise OR.
        properties: Properties about the connection.
        compress: Whether to request payload compression.
        large_threshold: How big a guild has to be to be considered large.
        shard: A two-integer tuple of the shard ID and shard count.
        presence: Initial presence information to start with.
    """
    data = {
        'token': token,
        'intents': functools.reduce(operator.or_, intents, 0),
        'compress': compress,
        'properties': properties if properties is not None else {},
    }

    if large_threshold is not None:
        data['large_threshold'] = large_threshold

    if shard is not None:
        data['shard'] = list(shard)

    if presence is not None:
        data['presence'] = presence

    return data


def resume_payload(token: str, session_id: str, seq: Optional[int]) -> Dict[str, Any]:
    """Build the data of a RESUME command."""
    return {'token': token, 'session_id': session_id, 'seq': seq}


class FrameDecoder:
    """Decode inbound WebSocket messages into frames.

    One decoder should be used per socket, transport compression keeps a
    zlib context alive for the whole lifetime of the connection.

    Messages that can't be decoded are logged and dropped, `decode()` returns
    None for them instead of raising.
    """

    compress: Union[str, bool]

    __slots__ = ('compress', '_buffer', '_inflator')

    def __init__(self, compress: Union[str, bool] = False) -> None:
        self.compress = compress

        self._buffer = bytearray()
        self._inflator = zlib.decompressobj()

    def _inflate(self, data: bytes) -> Optional[bytes]:
        if self.compress == 'zlib-stream':
            self._buffer.extend(data)

            if len(self._buffer) < 4 or self._buffer[-4:] != ZLIB_SUFFIX:
                # The message continues in the next binary message
                return None

            try:
                return self._inflator.decompress(self._buffer)
            finally:
                self._buffer = bytearray()

        return zlib.decompress(data)

    def decode(self, message: Union[str, bytes]) -> Optional[Frame]:
        """Decode a complete WebSocket message.

        Returns:
            The decoded frame, or None if nothing could be decoded (yet).
        """
        try:
            if isinstance(message, (bytes, bytearray)):
                raw = self._inflate(bytes(message))
                if raw is None:
                    return None
            else:
                raw = message

            payload = json_loads(raw)
        except (zlib.error, ValueError) as exc:
            _log.warning('Dropping undecodable message: %s', exc)
            return None

        if not isinstance(payload, dict) or not isinstance(payload.get('op'), int):
            _log.warning('Dropping malformed frame without op code')
            return None

        payload.setdefault('d', None)
        payload.setdefault('t', None)
        payload.setdefault('s', None)

        if payload['op'] != Opcode.HEARTBEAT_ACK:
            _log.debug('Received op %s (t=%s, s=%s)', payload['op'], payload['t'], payload['s'])

        return payload

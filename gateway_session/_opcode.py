import enum
from typing import Union

__all__ = (
    'Opcode',
    'CloseCode',
    'RECONNECT_CLOSE_CODES',
    'should_reconnect',
)


class Opcode(enum.IntEnum):
    DISPATCH = 0
    HEARTBEAT = 1
    IDENTIFY = 2
    PRESENCE_UPDATE = 3
    VOICE_STATE_UPDATE = 4
    RESUME = 6
    RECONNECT = 7
    REQUEST_GUILD_MEMBERS = 8
    INVALID_SESSION = 9
    HELLO = 10
    HEARTBEAT_ACK = 11


class CloseCode(enum.IntEnum):
    NORMAL = 1000
    GOING_AWAY = 1001
    NO_STATUS = 1005
    ABNORMAL = 1006
    INTERNAL_ERROR = 1011
    SERVICE_RESTART = 1012
    TRY_AGAIN_LATER = 1013
    BAD_GATEWAY = 1014

    UNKNOWN_ERROR = 4000
    UNKNOWN_OPCODE = 4001
    DECODING_ERROR = 4002
    NOT_AUTHENTICATED = 4003
    AUTHENTICATION_FAILED = 4004
    ALREADY_AUTHENTICATED = 4005
    INVALID_SEQ = 4007
    RATE_LIMITED = 4008
    SESSION_TIMED_OUT = 4009
    INVALID_SHARD = 4010
    SHARDING_REQUIRED = 4011
    INVALID_API_VERSION = 4012
    INVALID_INTENTS = 4013
    DISALLOWED_INTENTS = 4014


# https://discord.com/developers/docs/topics/opcodes-and-status-codes#gateway-gateway-close-event-codes
RECONNECT_CLOSE_CODES = frozenset({
    CloseCode.GOING_AWAY,
    CloseCode.NO_STATUS,
    CloseCode.ABNORMAL,
    CloseCode.INTERNAL_ERROR,
    CloseCode.SERVICE_RESTART,
    CloseCode.TRY_AGAIN_LATER,
    CloseCode.BAD_GATEWAY,
    CloseCode.UNKNOWN_ERROR,
    CloseCode.UNKNOWN_OPCODE,
    CloseCode.DECODING_ERROR,
    CloseCode.NOT_AUTHENTICATED,
    CloseCode.ALREADY_AUTHENTICATED,
    CloseCode.INVALID_SEQ,
    CloseCode.RATE_LIMITED,
    CloseCode.SESSION_TIMED_OUT,
})


def should_reconnect(code: Union[int, CloseCode, None]) -> bool:
    """Determine whether a closed connection may be reconnected.

    Unlike a permissive lookup this is an allow-list: only codes known to be
    safe to RESUME after return True. Anything else is treated as a policy
    rejection (bad token, invalid shard and so on) that would fail again on
    every retry.

    Parameters:
        code:
            The close code the socket was closed with. None means no code
            was received at all, which is always considered safe.

    Returns:
        Whether to reconnect to the gateway.
    """
    if code is None:
        return True

    return code in RECONNECT_CLOSE_CODES

"""Resumable client session for a push-based real-time gateway.

A session keeps exactly one WebSocket connection alive at a time: it answers
control frames, heartbeats at the interval the gateway dictates and RESUMEs
dropped connections instead of IDENTIFYing from scratch. The WebSocket
protocol itself is implemented sans-I/O with `wsproto`, wrapped by an asyncio
transport.
"""

from ._errors import *
from ._heartbeat import *
from ._opcode import *
from ._payload import *
from ._resolver import *
from ._session import *
from ._transport import *
from ._websocket import *

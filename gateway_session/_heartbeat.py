import asyncio
import logging
import random
from typing import Callable, Optional

__all__ = ('Heartbeat',)


_log = logging.getLogger(__name__)


class Heartbeat:
    """Periodic liveness signal for one gateway socket.

    The timer is built on the event loop's `call_at()` so that ticks are fire
    and forget, and so that each tick is scheduled exactly one interval after
    the previous one rather than drifting with callback latency.

    Attributes:
        interval: Seconds between heartbeats, None when not started.
        acknowledged: Whether the last heartbeat was acknowledged.
    """

    interval: Optional[float]
    acknowledged: bool

    __slots__ = (
        'interval', 'acknowledged', '_send', '_missed', '_jitter', '_loop',
        '_handle', '_deadline',
    )

    def __init__(
        self,
        send: Callable[[], None],
        missed: Callable[[], None],
        *,
        jitter: Callable[[], float] = random.random,
        loop: Optional[asyncio.AbstractEventLoop] = None,
    ) -> None:
        """Initialize the heartbeat timer.

        Parameters:
            send: Called to send a HEARTBEAT command.
            missed:
                Called instead of `send` when the previous heartbeat was never
                acknowledged. The connection should be considered dead.
            jitter:
                Returns a fraction in `[0, 1)` of the interval to wait before
                the first heartbeat.
            loop: Event loop to schedule on, defaults to the running loop.
        """
        self._send = send
        self._missed = missed
        self._jitter = jitter
        self._loop = loop

        self.interval = None
        self.acknowledged = True

        self._handle: Optional[asyncio.TimerHandle] = None
        self._deadline = 0.0

    @property
    def running(self) -> bool:
        return self._handle is not None

    def start(self, interval: int) -> None:
        """Start sending heartbeats.

        The first heartbeat is delayed by a random fraction of the interval so
        that many sessions started at once don't heartbeat in lockstep. Any
        previously running timer is stopped first.

        Parameters:
            interval: Milliseconds between heartbeats, as sent in HELLO.
        """
        self.stop()

        loop = self._loop or asyncio.get_running_loop()

        self.interval = interval / 1000
        # Optimistic, otherwise the first tick would count as missed
        self.acknowledged = True

        self._deadline = loop.time() + self.interval * self._jitter()
        self._handle = loop.call_at(self._deadline, self._tick)

    def stop(self) -> None:
        """Cancel all pending heartbeats."""
        if self._handle is not None:
            self._handle.cancel()
            self._handle = None

    def ack(self) -> None:
        """Mark the last heartbeat as acknowledged."""
        self.acknowledged = True

    def _tick(self) -> None:
        loop = self._loop or asyncio.get_running_loop()

        # Schedule the next tick before beating, a missed heartbeat stops the
        # timer which has to cancel this handle.
        self._deadline += self.interval
        self._handle = loop.call_at(self._deadline, self._tick)

        self.beat()

    def beat(self) -> None:
        """Send a heartbeat, or report a missed one.

        This is what every tick of the timer runs.
        """
        if not self.acknowledged:
            _log.warning('Heartbeat was not acknowledged, connection is dead')
            self._missed()
            return

        self.acknowledged = False
        self._send()

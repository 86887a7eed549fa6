"""
Worker control state machine.

Control signals (pause, resume, terminate) arrive asynchronously but are
only applied when the scheduler loop polls for them. Receiving a signal
just queues a control message; the state changes at the loop's next
poll point, so an in-flight dispatch is never interrupted.

    RUNNING --pause--> PAUSED --resume--> RUNNING
    RUNNING | PAUSED --terminate/interrupt/quit/kill--> SHUTTING_DOWN
"""

import asyncio
import logging
import queue
import signal
from typing import Dict, List, Optional, Tuple

from .types import SHUTDOWN_SIGNALS, ControlSignal, ControlState

logger = logging.getLogger(__name__)

TRANSITIONS: Dict[Tuple[ControlState, ControlSignal], ControlState] = {
    (ControlState.RUNNING, ControlSignal.PAUSE): ControlState.PAUSED,
    (ControlState.PAUSED, ControlSignal.RESUME): ControlState.RUNNING,
}

# Host signal -> control message
HOST_SIGNALS: Dict[str, ControlSignal] = {
    'SIGTERM': ControlSignal.TERMINATE,
    'SIGINT': ControlSignal.INTERRUPT,
    'SIGQUIT': ControlSignal.QUIT,
    'SIGUSR1': ControlSignal.KILL_CURRENT,
    'SIGUSR2': ControlSignal.PAUSE,
    'SIGCONT': ControlSignal.RESUME,
}


def next_state(state: ControlState, control_signal: ControlSignal) -> ControlState:
    """
    Apply one control signal to a state.

    Args:
        state: Current state
        control_signal: Signal received

    Returns:
        The resulting state; unchanged if the signal does not apply
    """
    if state is ControlState.SHUTTING_DOWN:
        return state
    if control_signal in SHUTDOWN_SIGNALS:
        return ControlState.SHUTTING_DOWN
    return TRANSITIONS.get((state, control_signal), state)


class WorkerControl:
    """
    Owner of a worker's control state.

    ``send`` may be called at any time (signal handlers do); ``poll`` is
    called by the scheduler loop and is the only place the state changes.
    Both must run on the loop's thread when a ``wait`` may be pending.
    """

    def __init__(self, state: ControlState = ControlState.RUNNING):
        self._state = state
        self._inbox: "queue.SimpleQueue[ControlSignal]" = queue.SimpleQueue()
        self._wakeup: Optional[asyncio.Event] = None
        self._installed: List[int] = []

    @property
    def state(self) -> ControlState:
        """Last polled state."""
        return self._state

    def send(self, control_signal: ControlSignal) -> None:
        """Queue a control message and wake a sleeping loop."""
        self._inbox.put(control_signal)
        if self._wakeup is not None:
            self._wakeup.set()

    def pause(self) -> None:
        self.send(ControlSignal.PAUSE)

    def resume(self) -> None:
        self.send(ControlSignal.RESUME)

    def shutdown(self) -> None:
        self.send(ControlSignal.TERMINATE)

    def poll(self) -> ControlState:
        """
        Apply every queued control message, in arrival order.

        Returns:
            Snapshot of the state after the messages were applied
        """
        while True:
            try:
                control_signal = self._inbox.get_nowait()
            except queue.Empty:
                return self._state
            self._apply(control_signal)

    def _apply(self, control_signal: ControlSignal) -> None:
        previous = self._state
        self._state = next_state(previous, control_signal)
        if self._state is previous:
            logger.debug(f"Ignoring {control_signal.value} while {previous.value}")
        elif self._state is ControlState.PAUSED:
            logger.info(f"{control_signal.value} received; pausing job processing")
        elif self._state is ControlState.RUNNING:
            logger.info(f"{control_signal.value} received; resuming job processing")
        else:
            logger.info(f"{control_signal.value} received; shutting down")

    async def wait(self, timeout: float) -> bool:
        """
        Sleep for up to ``timeout`` seconds.

        Returns early, with True, as soon as a control message arrives.
        """
        if self._wakeup is None:
            self._wakeup = asyncio.Event()
        if not self._inbox.empty():
            return True
        self._wakeup.clear()
        try:
            await asyncio.wait_for(self._wakeup.wait(), timeout=timeout)
        except asyncio.TimeoutError:
            return False
        return True

    def install_signal_handlers(self, loop: asyncio.AbstractEventLoop) -> None:
        """
        Translate host signals into control messages.

        TERM, INT, QUIT and USR1 request a graceful shutdown, USR2 pauses
        and CONT resumes. Signals the platform lacks are skipped.
        """
        for name, control_signal in HOST_SIGNALS.items():
            signum = getattr(signal, name, None)
            if signum is None:
                continue
            try:
                loop.add_signal_handler(signum, self.send, control_signal)
            except NotImplementedError:
                logger.warning(f"Cannot handle {name} on this platform")
                continue
            self._installed.append(signum)
        logger.info("Signals are registered")

    def remove_signal_handlers(self, loop: asyncio.AbstractEventLoop) -> None:
        while self._installed:
            loop.remove_signal_handler(self._installed.pop())

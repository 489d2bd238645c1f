"""
Cooperative cancellation.

A token is polled once per progress event and once per loop iteration.
Once cancelled it stays cancelled for the rest of the process.
"""

import asyncio
import logging
import signal
from typing import Iterable, List

logger = logging.getLogger(__name__)


class CancellationToken:
    """Sticky "cancel requested" flag."""

    def __init__(self) -> None:
        self._cancelled = False
        self.reason: str = ""

    def cancel(self, reason: str = "cancel requested") -> None:
        if not self._cancelled:
            self._cancelled = True
            self.reason = reason
            logger.warning(f"Cancellation requested: {reason}")

    @property
    def cancelled(self) -> bool:
        return self._cancelled


def install_signal_handlers(
    token: CancellationToken,
    loop: asyncio.AbstractEventLoop,
    signals: Iterable[signal.Signals] = (signal.SIGINT, signal.SIGTERM),
) -> List[signal.Signals]:
    """
    Route interrupt signals to the token.

    Returns the signals actually installed (platforms without loop signal
    support install none).
    """
    installed: List[signal.Signals] = []
    for sig in signals:
        try:
            loop.add_signal_handler(sig, token.cancel, f"received {sig.name}")
        except (NotImplementedError, RuntimeError, ValueError) as e:
            logger.debug(f"Cannot install handler for {sig.name}: {e}")
            continue
        installed.append(sig)
    return installed


def remove_signal_handlers(
    loop: asyncio.AbstractEventLoop, signals: Iterable[signal.Signals]
) -> None:
    for sig in signals:
        loop.remove_signal_handler(sig)

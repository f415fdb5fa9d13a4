"""
Progress reporting for a single token analysis
"""

import asyncio
import logging
from typing import Callable, List, Optional, Protocol, runtime_checkable

logger = logging.getLogger(__name__)

PHASES = (
    'cache_lookup',
    'base_security',
    'external_data',
    'derived_analysis',
    'scoring',
    'cache_write',
    'complete',
)


@runtime_checkable
class ProgressObserver(Protocol):
    def on_phase(self, phase: str) -> None: ...


class NullProgress:
    def on_phase(self, phase: str) -> None:
        pass


class CallbackProgress:
    """
    Adapts a plain callable to ProgressObserver.

    The callback is scheduled with loop.call_soon, never awaited, so the
    pipeline does not wait on the consumer. Exceptions from the callback are
    logged and dropped.
    """

    def __init__(self, callback: Callable[[str], None],
                 loop: Optional[asyncio.AbstractEventLoop] = None):
        self.callback = callback
        self._loop = loop

    def on_phase(self, phase: str) -> None:
        loop = self._loop or asyncio.get_running_loop()
        loop.call_soon(self._deliver, phase)

    def _deliver(self, phase: str) -> None:
        try:
            self.callback(phase)
        except Exception as e:
            logger.warning(f"Progress callback failed on phase {phase}: {e}")


class RecordingProgress:
    """Keeps every phase in order"""

    def __init__(self):
        self.phases: List[str] = []

    def on_phase(self, phase: str) -> None:
        self.phases.append(phase)


def as_observer(on_progress) -> ProgressObserver:
    """Accept None, an observer or a bare callable"""
    if on_progress is None:
        return NullProgress()
    if isinstance(on_progress, ProgressObserver):
        return on_progress
    if callable(on_progress):
        return CallbackProgress(on_progress)
    raise TypeError(f"on_progress must be a ProgressObserver or callable, got {type(on_progress).__name__}")

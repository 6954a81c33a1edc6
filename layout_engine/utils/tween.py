"""
Frame-driven position tweens.

Tweens do not own a clock: the caller advances them with ``update(dt)``
from its frame loop, which keeps every position write on the caller's
thread.
"""
from typing import Callable, Dict, Optional, Tuple
import logging
import math

import numpy as np

logger = logging.getLogger(__name__)

EasingFn = Callable[[float], float]


def _power_in_out(power: int) -> EasingFn:
    def ease(t: float) -> float:
        if t < 0.5:
            return (2 ** (power - 1)) * t ** power
        return 1 - ((-2 * t + 2) ** power) / 2
    return ease


EASINGS: Dict[str, EasingFn] = {
    "linear": lambda t: t,
    "power2.in": lambda t: t * t,
    "power2.out": lambda t: 1 - (1 - t) * (1 - t),
    "power2.inOut": _power_in_out(2),
    "power3.inOut": _power_in_out(3),
    "sine.inOut": lambda t: -(math.cos(math.pi * t) - 1) / 2,
}


def get_easing(name: str) -> EasingFn:
    easing = EASINGS.get(name)
    if easing is None:
        logger.warning(f"Unknown easing '{name}', using power2.inOut")
        return EASINGS["power2.inOut"]
    return easing


class PositionTween:
    """Interpolates node positions from start to end vectors.

    Args:
        tracks: mapping of node -> (start, end) vectors
        duration: seconds; zero or less completes on the first update
        easing: name from ``EASINGS``
        on_complete: called once after the final positions are written
    """

    def __init__(self,
                 tracks: Dict[object, Tuple[np.ndarray, np.ndarray]],
                 duration: float,
                 easing: str = "power2.inOut",
                 on_complete: Optional[Callable[[], None]] = None):
        self.tracks = {node: (np.array(start, dtype=float), np.array(end, dtype=float))
                       for node, (start, end) in tracks.items()}
        self.duration = max(0.0, float(duration))
        self.ease = get_easing(easing)
        self.on_complete = on_complete
        self.elapsed = 0.0
        self.finished = False
        self.cancelled = False

    def update(self, dt: float) -> bool:
        """Advance by ``dt`` seconds. Returns True once the tween has finished."""
        if self.finished or self.cancelled:
            return True
        self.elapsed += dt
        t = 1.0 if self.duration == 0 else min(1.0, self.elapsed / self.duration)
        self._write(self.ease(t))
        if t >= 1.0:
            self._complete()
        return self.finished

    def finish(self) -> None:
        """Jump to the end positions immediately."""
        if self.finished or self.cancelled:
            return
        self._write(1.0)
        self._complete()

    def cancel(self) -> None:
        """Stop without writing further positions or firing ``on_complete``."""
        self.cancelled = True

    def _write(self, progress: float) -> None:
        for node, (start, end) in self.tracks.items():
            node.position[:] = start + (end - start) * progress

    def _complete(self) -> None:
        self.finished = True
        if self.on_complete is not None:
            self.on_complete()

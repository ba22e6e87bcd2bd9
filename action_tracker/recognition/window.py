"""Window buffer with stride-batched eviction.

Frames are appended one at a time. Once the buffer grows past its capacity W the
S oldest frames are dropped in a single batch, so the window advances in steps
of S frames rather than sliding one frame at a time. The buffer reports
"ready" exactly when it holds W frames after an append.
"""

from __future__ import annotations

from collections import deque
from typing import Deque, Iterator

import numpy as np

from action_tracker.recognition.encoding import stack_window


class WindowBuffer:
    """Bounded FIFO of encoded frames owned by a single producer."""

    def __init__(self, capacity: int = 90, stride: int = 10) -> None:
        if capacity < 1:
            raise ValueError(f"capacity must be >= 1; received {capacity}.")
        if not 1 <= stride <= capacity:
            raise ValueError(f"stride must be within [1, {capacity}]; received {stride}.")
        self.capacity = int(capacity)
        self.stride = int(stride)
        self._frames: Deque[np.ndarray] = deque()
        self.evictions = 0
        self.last_evicted = 0

    def append(self, frame: np.ndarray) -> bool:
        """Push `frame`; evict a stride batch if over capacity. Returns True when ready."""
        self._frames.append(frame)
        self.last_evicted = 0
        if len(self._frames) > self.capacity:
            for _ in range(min(self.stride, len(self._frames))):
                self._frames.popleft()
            self.last_evicted = self.stride
            self.evictions += 1
        return self.is_ready

    @property
    def is_ready(self) -> bool:
        return len(self._frames) == self.capacity

    def tensor(self) -> np.ndarray:
        """Window contents as a (len, 3, N) array, oldest frame first."""
        return stack_window(self._frames)

    def clear(self) -> None:
        self._frames.clear()
        self.last_evicted = 0

    def __len__(self) -> int:
        return len(self._frames)

    def __iter__(self) -> Iterator[np.ndarray]:
        return iter(tuple(self._frames))


__all__ = ["WindowBuffer"]

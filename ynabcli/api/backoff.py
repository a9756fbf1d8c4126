from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True)
class BackoffPolicy:
    """
    Exponential backoff without jitter or cap.

    ``delay(1)`` is the wait before the second overall attempt. With the
    defaults the waits before attempts 2, 3 and 4 are 1s, 2s and 4s; the
    attempt ceiling, not a clamp, bounds the total.
    """
    base_s: float = 1.0

    def delay(self, attempt_index: int) -> float:
        if attempt_index < 1:
            raise ValueError("attempt_index must be >= 1")
        return self.base_s * (2 ** (attempt_index - 1))

"""
Chronologically ordered, collision-resistant child ids.

Ids are 20 characters: 8 encode the creation time in milliseconds, 12 are
random. Within one generator, ids created in the same millisecond reuse the
previous random part incremented by one, so ids always sort in creation order.
"""

import random
import threading
import time
from typing import Callable, List, Optional

# Characters in ASCII order so that string comparison matches numeric order
PUSH_CHARS = "-0123456789ABCDEFGHIJKLMNOPQRSTUVWXYZ_abcdefghijklmnopqrstuvwxyz"


class PushIdGenerator:
    """Generates ids that sort lexicographically in creation order"""

    def __init__(self, clock: Optional[Callable[[], int]] = None, rng: Optional[random.Random] = None):
        self._clock = clock or (lambda: int(time.time() * 1000))
        self._rng = rng or random.SystemRandom()
        self._last_time = -1
        self._last_random: List[int] = [0] * 12
        self._lock = threading.Lock()

    def next_id(self) -> str:
        with self._lock:
            now = self._clock()
            duplicate_time = now <= self._last_time

            # A clock that steps backwards keeps the previous time to stay ordered
            if duplicate_time:
                now = self._last_time
            self._last_time = now

            time_chars = []
            remaining = now
            for _ in range(8):
                time_chars.append(PUSH_CHARS[remaining % 64])
                remaining //= 64
            if remaining:
                raise ValueError("Timestamp too large to encode in a push id")
            time_chars.reverse()

            if not duplicate_time:
                self._last_random = [self._rng.randrange(64) for _ in range(12)]
            else:
                # Increment the random part, carrying over on overflow
                index = 11
                while index >= 0 and self._last_random[index] == 63:
                    self._last_random[index] = 0
                    index -= 1
                if index < 0:
                    raise ValueError("Push id space exhausted for this millisecond")
                self._last_random[index] += 1

            return "".join(time_chars) + "".join(PUSH_CHARS[value] for value in self._last_random)

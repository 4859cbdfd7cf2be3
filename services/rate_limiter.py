import time
from typing import Callable, Dict, List, Optional


class RateLimiter:
    """Sliding-window limiter keyed by an arbitrary string (the sign-in email)."""

    def __init__(
        self,
        max_requests: int = 10,
        window: float = 60.0,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.max_requests = max_requests
        self.window = window
        self._clock = clock
        self._requests: Dict[str, List[float]] = {}

    def is_allowed(self, key: str) -> bool:
        now = self._clock()
        window_start = now - self.window
        requests = [stamp for stamp in self._requests.get(key, []) if stamp > window_start]

        if len(requests) >= self.max_requests:
            self._requests[key] = requests
            return False

        requests.append(now)
        self._requests[key] = requests
        return True

    def clear(self, key: Optional[str] = None) -> None:
        if key is None:
            self._requests.clear()
        else:
            self._requests.pop(key, None)

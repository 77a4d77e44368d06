"""
sink_memory.py - Time-limited memory of position keys.

Policy tasks use this to remember targets they should skip for a while:
containers found to be full, crops that were just harvested. Entries
expire after a TTL and are evicted lazily on access or by cleanup().
"""

import logging
from typing import Callable, Dict, List

logger = logging.getLogger(__name__)


class SinkMemory:
    """
    Map of position key -> time the key was marked.

    Usage:
        memory = SinkMemory(ttl=300.0, clock=scheduler.now)
        memory.mark("10,64,3")
        if memory.contains("10,64,3"):
            ...
    """

    def __init__(self, ttl: float, clock: Callable[[], float], label: str = "memory"):
        """
        Args:
            ttl: Seconds an entry stays valid
            clock: Time source, usually Scheduler.now
            label: Name used in log messages
        """
        self.ttl = ttl
        self._clock = clock
        self._label = label
        self._marked: Dict[str, float] = {}

    def mark(self, key: str) -> None:
        self._marked[key] = self._clock()
        logger.debug(f"{self._label}: marked {key} (ttl={self.ttl:.0f}s)")

    def contains(self, key: str) -> bool:
        """True if key was marked less than ttl seconds ago."""
        marked_at = self._marked.get(key)
        if marked_at is None:
            return False
        if self._clock() - marked_at >= self.ttl:
            del self._marked[key]
            logger.debug(f"{self._label}: {key} expired")
            return False
        return True

    def __contains__(self, key: str) -> bool:
        return self.contains(key)

    def cleanup(self) -> int:
        """Evict expired entries. Returns the number removed."""
        now = self._clock()
        expired = [k for k, t in self._marked.items() if now - t >= self.ttl]
        for key in expired:
            del self._marked[key]
        return len(expired)

    def clear(self) -> None:
        self._marked.clear()

    def keys(self) -> List[str]:
        self.cleanup()
        return list(self._marked)

    def __len__(self) -> int:
        self.cleanup()
        return len(self._marked)

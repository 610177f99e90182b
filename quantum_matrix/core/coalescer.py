from __future__ import annotations

import logging
import time
from typing import Any, Callable, Dict, Hashable, List, Optional, Tuple

log = logging.getLogger(__name__)


class WriteCoalescer:
    """
    Debounced write queue keyed by id.

    `submit` replaces whatever is pending for the key and restarts its delay,
    so a burst of edits to one allocation ends in a single write. Nothing
    runs on its own: `pump()` writes the entries whose delay has elapsed and
    `flush()` writes everything (call it on shutdown and in tests).
    """

    def __init__(
        self,
        writer: Callable[[Any], None],
        delay_seconds: float = 1.5,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._writer = writer
        self._delay = delay_seconds
        self._clock = clock
        self._pending: Dict[Hashable, Tuple[float, Any]] = {}

    def submit(self, key: Hashable, value: Any) -> None:
        self._pending[key] = (self._clock() + self._delay, value)

    def peek(self, key: Hashable) -> Optional[Any]:
        entry = self._pending.get(key)
        return entry[1] if entry else None

    def pending(self) -> List[Any]:
        return [value for _, value in self._pending.values()]

    def __len__(self) -> int:
        return len(self._pending)

    def pump(self) -> int:
        now = self._clock()
        due = [k for k, (deadline, _) in self._pending.items() if deadline <= now]
        return self._write(due)

    def flush(self) -> int:
        return self._write(list(self._pending))

    def _write(self, keys) -> int:
        written = 0
        for key in keys:
            deadline, value = self._pending.pop(key)
            try:
                self._writer(value)
                written += 1
            except Exception:
                log.exception("Coalesced write failed for %s, keeping it queued", key)
                # a newer submit may have landed while writing
                self._pending.setdefault(key, (deadline, value))
        if written:
            log.debug("Flushed %d coalesced writes", written)
        return written

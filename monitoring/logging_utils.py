import asyncio
import logging
from collections import deque
from typing import List, Optional, Set


DEFAULT_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"


def setup_logging(level: int = logging.INFO, log_format: Optional[str] = None) -> None:
    """
    Configure process-wide logging with a consistent format.

    Intended to be called once from the main entrypoint or service startup.
    Safe to call multiple times; subsequent calls are ignored if handlers exist.
    """
    if logging.getLogger().handlers:
        return

    fmt = log_format or DEFAULT_FORMAT
    logging.basicConfig(level=level, format=fmt)


class SessionLogStream(logging.Handler):
    """Keeps the most recent formatted log lines and fans new ones out to subscribers.

    Subscribers are bounded asyncio queues (one per WebSocket client); a slow
    consumer loses its oldest lines rather than blocking the emitter.
    """

    def __init__(self, capacity: int = 500, level: int = logging.INFO, queue_size: int = 200):
        super().__init__(level=level)
        self.setFormatter(logging.Formatter("%(asctime)s [%(levelname)s] %(message)s", "%Y-%m-%d %H:%M:%S"))
        self._lines: deque = deque(maxlen=capacity)
        self._subscribers: Set[asyncio.Queue] = set()
        self._queue_size = queue_size

    def emit(self, record: logging.LogRecord) -> None:
        try:
            line = self.format(record)
        except Exception:
            self.handleError(record)
            return
        self._lines.append(line)
        for queue in list(self._subscribers):
            if queue.full():
                queue.get_nowait()
            queue.put_nowait(line)

    def recent(self, limit: Optional[int] = None) -> List[str]:
        lines = list(self._lines)
        if limit is not None and limit >= 0:
            return lines[-limit:] if limit else []
        return lines

    def subscribe(self) -> asyncio.Queue:
        queue: asyncio.Queue = asyncio.Queue(maxsize=self._queue_size)
        self._subscribers.add(queue)
        return queue

    def unsubscribe(self, queue: asyncio.Queue) -> None:
        self._subscribers.discard(queue)

    def attach(self, logger: Optional[logging.Logger] = None) -> 'SessionLogStream':
        target = logger or logging.getLogger()
        if self not in target.handlers:
            target.addHandler(self)
        # records below the logger's own level never reach the handler
        if target.getEffectiveLevel() > self.level:
            target.setLevel(self.level)
        return self

    def detach(self, logger: Optional[logging.Logger] = None) -> None:
        (logger or logging.getLogger()).removeHandler(self)

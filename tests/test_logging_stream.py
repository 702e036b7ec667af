import asyncio
import logging
import sys

sys.path.insert(0, '.')

from monitoring.logging_utils import SessionLogStream


def _logger(name: str) -> logging.Logger:
    logger = logging.getLogger(name)
    logger.setLevel(logging.DEBUG)
    logger.propagate = False
    return logger


def test_ring_buffer_keeps_latest_lines():
    logger = _logger('test.stream.ring')
    stream = SessionLogStream(capacity=3).attach(logger)
    try:
        for i in range(5):
            logger.info("line %d", i)
        logger.debug("below handler level")
    finally:
        stream.detach(logger)

    lines = stream.recent()
    assert len(lines) == 3
    assert lines[0].endswith('line 2')
    assert lines[-1].endswith('line 4')
    assert stream.recent(1) == lines[-1:]
    assert stream.recent(0) == []


def test_subscribers_receive_new_lines_and_drop_oldest_when_full():
    logger = _logger('test.stream.subscribers')
    stream = SessionLogStream(capacity=10, queue_size=2).attach(logger)

    async def _run():
        queue = stream.subscribe()
        logger.warning("first")
        logger.warning("second")
        logger.warning("third")
        received = [queue.get_nowait(), queue.get_nowait()]
        stream.unsubscribe(queue)
        logger.warning("fourth")
        return received, queue.empty()

    try:
        received, empty = asyncio.run(_run())
    finally:
        stream.detach(logger)

    assert received[0].endswith('second')
    assert received[1].endswith('third')
    assert empty
    assert '[WARNING]' in received[0]

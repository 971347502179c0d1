import asyncio
import random
from typing import AsyncIterator, Iterable, List, Optional, Protocol
import logging

from models.proctoring_models import DetectionSignal, EventKind

logger = logging.getLogger(__name__)


class DetectorFeed(Protocol):
    """Anything that yields detection signals asynchronously, one at a time"""

    def __aiter__(self) -> AsyncIterator[DetectionSignal]:
        ...


class SimulatedDetectorFeed:
    """Random stand-in for a vision detector

    Every interval there is a `probability` chance of one event, its kind
    picked uniformly.
    """

    def __init__(
        self,
        interval: float = 1.0,
        probability: float = 0.1,
        rng: Optional[random.Random] = None,
    ):
        self.interval = interval
        self.probability = probability
        self.rng = rng or random.Random()
        self.kinds = list(EventKind)

    async def __aiter__(self) -> AsyncIterator[DetectionSignal]:
        logger.info("🎲 Simulated detector feed started")
        while True:
            await asyncio.sleep(self.interval)
            if self.rng.random() < self.probability:
                yield DetectionSignal(kind=self.rng.choice(self.kinds))


class FixtureDetectorFeed:
    """Replays a fixed sequence of signals, for tests and demos"""

    def __init__(self, signals: Iterable[DetectionSignal], delay: float = 0.0):
        self.signals: List[DetectionSignal] = list(signals)
        self.delay = delay

    async def __aiter__(self) -> AsyncIterator[DetectionSignal]:
        for signal in self.signals:
            if self.delay:
                await asyncio.sleep(self.delay)
            yield signal

"""Pacing helpers: spacing, conditional spacing and start-up delays."""

from __future__ import annotations

import asyncio
import logging
import random
from dataclasses import dataclass
from typing import Awaitable, Callable, Optional

from netbench.config import CONDITIONAL_SPACING_REGEX

logger = logging.getLogger(__name__)

SleepFunc = Callable[[float], Awaitable[None]]


@dataclass(frozen=True)
class ConditionalSpacing:
    """Extra delay applied when a metric is above or below a threshold."""

    operator: str
    threshold: float
    delay_ms: int

    @classmethod
    def parse(cls, rule: Optional[str]) -> Optional[ConditionalSpacing]:
        """Parse ``">N=ms"`` or ``"<N=ms"``; None for an empty or malformed rule."""
        if not rule:
            return None
        match = CONDITIONAL_SPACING_REGEX.match(rule.strip())
        if not match:
            return None
        return cls(match.group(1), float(match.group(2)), int(match.group(3)))

    def delay_for(self, metric: Optional[float]) -> int:
        if metric is None or metric < 0:
            return 0
        if self.operator == "<" and metric < self.threshold:
            return self.delay_ms
        if self.operator == ">" and metric > self.threshold:
            return self.delay_ms
        return 0


def parse_sleep_range(value: Optional[str]) -> Optional[tuple[float, float]]:
    """Parse ``"N"`` or ``"min-max"`` seconds; None when malformed."""
    if value is None:
        return None
    low, sep, high = str(value).partition("-")
    try:
        minimum = float(low.strip())
        maximum = float(high.strip()) if sep else minimum
    except ValueError:
        return None
    if minimum < 0 or maximum < minimum:
        return None
    return minimum, maximum


class Pacer:
    """Single point through which every run delay is awaited."""

    def __init__(
        self,
        sleep: Optional[SleepFunc] = None,
        conditional: Optional[ConditionalSpacing] = None,
        rng: Optional[random.Random] = None,
    ):
        self._sleep = sleep or asyncio.sleep
        self.conditional = conditional
        self.rng = rng or random.Random()

    async def sleep(self, seconds: float) -> None:
        if seconds > 0:
            await self._sleep(seconds)

    async def space(self, spacing_ms: int) -> None:
        if spacing_ms > 0:
            logger.debug("Spacing %d ms", spacing_ms)
            await self.sleep(spacing_ms / 1000)

    async def conditional_space(self, metric: Optional[float]) -> bool:
        """Apply conditional spacing against *metric*; True when a delay was applied."""
        if self.conditional is None:
            return False
        delay = self.conditional.delay_for(metric)
        if not delay:
            return False
        logger.debug(
            "Conditional spacing of %d ms: %s %s %s",
            delay, metric, self.conditional.operator, self.conditional.threshold,
        )
        await self.sleep(delay / 1000)
        return True

    async def sleep_before_start(self, value: Optional[str]) -> float:
        bounds = parse_sleep_range(value)
        if bounds is None:
            if value is not None:
                logger.warning("sleep_before_start %s is not valid", value)
            return 0.0
        seconds = self.rng.uniform(*bounds) if bounds[1] > bounds[0] else bounds[0]
        logger.info("Sleeping %.1f seconds before starting", seconds)
        await self.sleep(seconds)
        return seconds

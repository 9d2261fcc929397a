import random
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field


class BackoffPolicy(BaseModel):
    """Exponential backoff with multiplicative jitter.

    The delay for attempt ``n`` is ``initial * multiplier**(n-1)`` capped at
    ``maximum``, then scaled by a factor drawn from ``1 +- jitter``.
    """

    model_config = ConfigDict(frozen=True)

    initial: float = Field(1.0, gt=0)
    maximum: float = Field(120.0, gt=0)
    multiplier: float = Field(1.6, ge=1.0)
    jitter: float = Field(0.23, ge=0, lt=1.0)

    def compute_delay(self, attempt: int, rng: Optional[random.Random] = None) -> float:
        """Returns the number of seconds to sleep after the given (1-based) failed attempt"""
        if attempt < 1:
            raise ValueError(f"attempt must be >= 1, got {attempt}")

        rng = rng or random.Random()
        try:
            delay = min(self.initial * self.multiplier ** (attempt - 1), self.maximum)
        except OverflowError:
            delay = self.maximum
        return delay * (1.0 + self.jitter * rng.uniform(-1.0, 1.0))

    @property
    def upper_bound(self) -> float:
        return self.maximum * (1.0 + self.jitter)

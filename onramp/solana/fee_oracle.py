"""
Priority fee estimation for Solana.
"""

from statistics import median_high
from typing import Iterable, List, Optional, Protocol

from loguru import logger

from onramp.config import (
    PRIORITY_FEE_BUFFER,
    PRIORITY_FEE_DEFAULT,
    PRIORITY_FEE_MAX,
    PRIORITY_FEE_MIN,
    PRIORITY_FEE_SAMPLE_SIZE,
)
from onramp.solana.models import PriorityFeeSample


class PrioritizationFeeSource(Protocol):
    async def get_recent_prioritization_fees(self) -> List[dict]:
        ...


def recommend_priority_fee(samples: Iterable[PriorityFeeSample]) -> int:
    """
    Derive a bounded fee from recent observations.

    Takes the most recent observations by slot, their median (upper median
    for an even count), adds a 20% buffer and clamps the result.

    Args:
        samples: Recent prioritization-fee observations

    Returns:
        Recommended fee, or the default when there are no observations
    """
    recent = sorted(samples, key=lambda s: s.slot, reverse=True)[:PRIORITY_FEE_SAMPLE_SIZE]
    if not recent:
        return PRIORITY_FEE_DEFAULT

    median_fee = median_high(s.prioritization_fee for s in recent)
    suggested = round(median_fee * PRIORITY_FEE_BUFFER)
    return min(max(suggested, PRIORITY_FEE_MIN), PRIORITY_FEE_MAX)


class PriorityFeeEstimator:
    """
    Samples recent prioritization fees and recommends a priority fee.

    Never raises: any sampling error falls back to the default fee.
    """

    def __init__(self, source: Optional[PrioritizationFeeSource]):
        """
        Initialize the estimator.

        Args:
            source: Anything exposing `get_recent_prioritization_fees()`
        """
        self.source = source

    async def estimate(self) -> int:
        if self.source is None:
            return PRIORITY_FEE_DEFAULT

        try:
            raw = await self.source.get_recent_prioritization_fees()
            samples = [
                PriorityFeeSample(slot=item["slot"], prioritization_fee=item["prioritizationFee"])
                for item in raw
            ]
        except Exception as e:
            logger.warning(f"Error getting priority fees, using default: {str(e)}")
            return PRIORITY_FEE_DEFAULT

        fee = recommend_priority_fee(samples)
        logger.debug(
            f"Priority fee estimate: {fee} from {len(samples)} samples",
            extra={"fee": fee, "sample_size": len(samples)}
        )
        return fee

"""Ordered candidate fallback: try each candidate in turn, first success wins."""
import logging
from dataclasses import dataclass, field
from typing import Awaitable, Callable, Dict, Generic, List, Optional, Sequence, TypeVar

from foundry_mcp.servicenow.errors import ServiceNowError

logger = logging.getLogger(__name__)

C = TypeVar("C")
T = TypeVar("T")


@dataclass
class FallbackOutcome(Generic[C, T]):
    candidate: Optional[C] = None
    value: Optional[T] = None
    tried: List[C] = field(default_factory=list)
    errors: Dict[str, ServiceNowError] = field(default_factory=dict)

    @property
    def found(self) -> bool:
        return self.candidate is not None


async def first_success(
    candidates: Sequence[C],
    resolver: Callable[[C], Awaitable[Optional[T]]],
) -> FallbackOutcome[C, T]:
    """
    Resolve candidates in order and stop at the first that yields a value.

    A resolver returning None, or raising ServiceNowError, moves on to the
    next candidate. Any other exception propagates.
    """
    outcome: FallbackOutcome[C, T] = FallbackOutcome()
    for candidate in candidates:
        outcome.tried.append(candidate)
        try:
            value = await resolver(candidate)
        except ServiceNowError as e:
            logger.debug(f"Candidate {candidate} failed: {e.message}")
            outcome.errors[str(candidate)] = e
            continue
        if value is not None:
            outcome.candidate = candidate
            outcome.value = value
            return outcome
    return outcome

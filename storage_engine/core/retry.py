"""
Bounded retry with a fixed delay between attempts.

Used by recovery logic only; ensure/verify/monitor never retry.
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import Awaitable, Callable, Generic, Optional, TypeVar

T = TypeVar("T")


@dataclass(frozen=True)
class RetryOutcome(Generic[T]):
    succeeded: bool
    attempts: int
    value: Optional[T] = None


async def retry_fixed(
    attempt: Callable[[], Awaitable[T]],
    *,
    max_attempts: int,
    delay_seconds: float,
    description: str,
    is_success: Callable[[T], bool] = bool,
) -> RetryOutcome[T]:
    """
    Call attempt up to max_attempts times, sleeping delay_seconds between calls.

    Exceptions raised by attempt count as a failed attempt. No sleep follows
    the final attempt.
    """
    if max_attempts < 1:
        raise ValueError("max_attempts must be at least 1")

    value: Optional[T] = None
    for number in range(1, max_attempts + 1):
        try:
            value = await attempt()
            if is_success(value):
                logging.info(f"{description}: succeeded on attempt {number}/{max_attempts}")
                return RetryOutcome(succeeded=True, attempts=number, value=value)
        except Exception as e:
            logging.warning(f"{description}: attempt {number}/{max_attempts} raised {e}")
        else:
            logging.info(f"{description}: attempt {number}/{max_attempts} failed")

        if number < max_attempts:
            await asyncio.sleep(delay_seconds)

    return RetryOutcome(succeeded=False, attempts=max_attempts, value=value)

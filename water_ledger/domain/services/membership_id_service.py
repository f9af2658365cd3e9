"""
Membership ID generation.

Random fixed-width numeric ids, checked against existing customers and retried
on collision. Random draws tolerate ids being assigned without a central
counter; the bounded retry loop keeps a nearly full id space from spinning.
"""
import secrets
from typing import Awaitable, Callable

from water_ledger.core.config import settings
from water_ledger.core.exceptions import MembershipIdExhaustedError
from water_ledger.core.logging import get_logger

logger = get_logger(__name__)

ExistsCheck = Callable[[str], Awaitable[bool]]


def random_membership_id(width: int) -> str:
    """Uniform draw over every ``width``-digit string, leading zeros included"""
    return str(secrets.randbelow(10 ** width)).zfill(width)


async def generate_membership_id(
    exists: ExistsCheck,
    width: int | None = None,
    max_attempts: int | None = None,
) -> str:
    """
    Draw candidates until ``exists`` reports one as unused.

    Raises:
        MembershipIdExhaustedError: every one of ``max_attempts`` draws collided
    """
    width = width or settings.MEMBERSHIP_ID_WIDTH
    max_attempts = max_attempts or settings.MEMBERSHIP_ID_MAX_ATTEMPTS

    for attempt in range(1, max_attempts + 1):
        candidate = random_membership_id(width)
        if not await exists(candidate):
            if attempt > 1:
                logger.info(
                    "Membership id found after collisions",
                    extra_data={"attempts": attempt, "width": width},
                )
            return candidate

    logger.error(
        "Membership id space exhausted",
        extra_data={"attempts": max_attempts, "width": width},
    )
    raise MembershipIdExhaustedError(attempts=max_attempts, width=width)

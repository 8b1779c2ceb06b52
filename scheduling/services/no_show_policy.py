"""
Customer no-show escalation ladder.

The booking status is derived from the no-show count alone, so the ladder
can be re-applied to any count and always gives the same answer:

    new count   booking status
    ---------   --------------
    1           normal
    2           prepaid_only
    3+          blocked
"""

from database.models import BookingStatus
from shared.config import get_settings


def booking_status_for_count(
    no_show_count: int,
    prepaid_threshold: int | None = None,
    block_threshold: int | None = None,
) -> BookingStatus:
    """Map a no-show count to a booking status tier."""
    settings = get_settings()
    if prepaid_threshold is None:
        prepaid_threshold = settings.NO_SHOW_PREPAID_THRESHOLD
    if block_threshold is None:
        block_threshold = settings.NO_SHOW_BLOCK_THRESHOLD

    if no_show_count >= block_threshold:
        return BookingStatus.BLOCKED
    if no_show_count >= prepaid_threshold:
        return BookingStatus.PREPAID_ONLY
    return BookingStatus.NORMAL


def apply_no_show(
    prior_count: int | None,
    prepaid_threshold: int | None = None,
    block_threshold: int | None = None,
) -> tuple[int, BookingStatus]:
    """
    Apply one more no-show to a customer.

    Args:
        prior_count: Customer's current no-show count (None treated as 0)
        prepaid_threshold: Override for NO_SHOW_PREPAID_THRESHOLD
        block_threshold: Override for NO_SHOW_BLOCK_THRESHOLD

    Returns:
        Tuple of (new_count, booking_status)

    Example:
        >>> apply_no_show(1)
        (2, <BookingStatus.PREPAID_ONLY: 'prepaid_only'>)
    """
    new_count = (prior_count or 0) + 1
    return new_count, booking_status_for_count(
        new_count, prepaid_threshold, block_threshold
    )

"""Bid ratchet: validation and application of incoming bids.

The auction's best value only moves one way. In MONEY mode a bid must be
strictly greater than the current price; in TIME mode it must be strictly
fewer minutes than the current time. The caller is responsible for running
``check_improvement`` and ``apply_bid`` inside one per-task critical section.
"""
import logging
import math
import re
from datetime import datetime
from decimal import Decimal, InvalidOperation
from typing import Optional, Union

from .models import AuctionBid, AuctionMode, Grade, Task, TaskStatus, TaskType

logger = logging.getLogger("auction-core.bid_ratchet")

BidValue = Union[Decimal, int]

REASON_AUCTION_CLOSED = "Auction closed"
REASON_NOT_AUCTIONED = "Auction closed: task is assigned directly, not auctioned"
REASON_NO_IMPROVEMENT = "Bid does not improve on current offer"

_MONEY_QUANT = Decimal("0.01")
# Storage columns are NUMERIC(14, 2) and INTEGER.
MAX_MONEY = Decimal("999999999999.99")
MAX_MINUTES = 2_147_483_647
_DECIMAL_COMMA = re.compile(r"^\d+,\d{1,2}$")


class BidValidationError(ValueError):
    """Raised when a bid value is missing, malformed, or of the wrong mode."""
    pass


def parse_money(value) -> Decimal:
    """
    Normalize a money amount.

    Strings may carry thousand separators (spaces, non-breaking spaces,
    underscores, commas). A single comma followed by one or two digits is
    read as a decimal comma.

    Args:
        value: int, float, Decimal or formatted string

    Returns:
        Positive Decimal with two decimal places

    Raises:
        BidValidationError: If the value is not a positive finite amount in
            whole cents no greater than ``MAX_MONEY``
    """
    if value is None or isinstance(value, bool):
        raise BidValidationError("Money value is required")

    if isinstance(value, str):
        text = re.sub(r"[\s_]", "", value)
        if _DECIMAL_COMMA.match(text):
            text = text.replace(",", ".")
        else:
            text = text.replace(",", "")
        if not text:
            raise BidValidationError("Money value is required")
        try:
            amount = Decimal(text)
        except InvalidOperation:
            raise BidValidationError(f"Money value is not a number: {value!r}")
    elif isinstance(value, (int, float, Decimal)):
        try:
            amount = Decimal(str(value))
        except InvalidOperation:
            raise BidValidationError(f"Money value is not a number: {value!r}")
    else:
        raise BidValidationError(f"Unsupported money value: {value!r}")

    if not amount.is_finite():
        raise BidValidationError("Money value must be finite")
    if amount <= 0:
        raise BidValidationError("Money value must be greater than zero")
    if amount > MAX_MONEY:
        raise BidValidationError(f"Money value must not exceed {MAX_MONEY}")
    try:
        quantized = amount.quantize(_MONEY_QUANT)
    except InvalidOperation:
        raise BidValidationError(f"Money value is not a valid amount: {value!r}")
    if quantized != amount:
        raise BidValidationError("Money value must have at most two decimal places")
    return quantized


def parse_minutes(value) -> int:
    """
    Normalize a completion time in whole minutes.

    Raises:
        BidValidationError: If the value is not a positive whole number
    """
    if value is None or isinstance(value, bool):
        raise BidValidationError("Time value is required")

    if isinstance(value, str):
        text = value.strip()
        if not re.fullmatch(r"\d+", text):
            raise BidValidationError(f"Time value must be whole minutes: {value!r}")
        minutes = int(text)
    elif isinstance(value, int):
        minutes = value
    elif isinstance(value, (float, Decimal)):
        as_float = float(value)
        if not math.isfinite(as_float) or not as_float.is_integer():
            raise BidValidationError(f"Time value must be whole minutes: {value!r}")
        minutes = int(as_float)
    else:
        raise BidValidationError(f"Unsupported time value: {value!r}")

    if minutes <= 0:
        raise BidValidationError("Time value must be greater than zero")
    if minutes > MAX_MINUTES:
        raise BidValidationError(f"Time value must not exceed {MAX_MINUTES} minutes")
    return minutes


def extract_bid_value(mode: AuctionMode, value_money=None, value_time_minutes=None) -> BidValue:
    """
    Pick and normalize the value matching the auction mode.

    Exactly one of ``value_money`` / ``value_time_minutes`` must be given.

    Raises:
        BidValidationError: If neither, both, or the wrong one is supplied
    """
    has_money = value_money is not None and value_money != ""
    has_time = value_time_minutes is not None and value_time_minutes != ""

    if has_money and has_time:
        raise BidValidationError("Provide either a money value or a time value, not both")
    if not has_money and not has_time:
        raise BidValidationError("Bid value is required")

    if mode == AuctionMode.MONEY:
        if not has_money:
            raise BidValidationError("This auction is bid in money; provide a money value")
        return parse_money(value_money)

    if not has_time:
        raise BidValidationError("This auction is bid in time; provide a time value in minutes")
    return parse_minutes(value_time_minutes)


def is_auction_open(task: Task) -> bool:
    """True while the auction accepts bids."""
    return (
        task.task_type != TaskType.INDIVIDUAL
        and task.status == TaskStatus.BACKLOG
        and task.auction_end_at is None
    )


def closed_reason(task: Task) -> Optional[str]:
    """Reason bids are refused, or None if the auction is open."""
    if task.task_type == TaskType.INDIVIDUAL:
        return REASON_NOT_AUCTIONED
    if not is_auction_open(task):
        return REASON_AUCTION_CLOSED
    return None


def current_best(task: Task) -> Optional[BidValue]:
    """Best value so far: the leading bid, or the base value before any bids."""
    if task.mode == AuctionMode.TIME:
        if task.auction_has_bids and task.current_time_minutes is not None:
            return task.current_time_minutes
        return task.base_time_minutes
    if task.auction_has_bids and task.current_price is not None:
        return Decimal(task.current_price)
    return Decimal(task.base_price) if task.base_price is not None else None


def improves(mode: AuctionMode, candidate: BidValue, best: Optional[BidValue]) -> bool:
    """Strict improvement check: higher price, or fewer minutes."""
    if best is None:
        return True
    if mode == AuctionMode.TIME:
        return candidate < best
    return candidate > best


def check_improvement(task: Task, candidate: BidValue) -> Optional[str]:
    """Return a rejection reason if ``candidate`` does not beat the current best."""
    best = current_best(task)
    if improves(task.mode, candidate, best):
        return None
    logger.debug(f"Rejected bid {candidate} on task {task.id}: current best {best}")
    return REASON_NO_IMPROVEMENT


def apply_bid(
    task: Task,
    bidder,
    bidder_grade: Grade,
    candidate: BidValue,
    now: datetime,
) -> AuctionBid:
    """
    Record an accepted bid on the task.

    Updates the task's current best value, marks it as having bids and makes
    the bidder the provisional winner. The returned bid is not yet added to
    a session.
    """
    bid = AuctionBid(
        task_id=task.id,
        bidder_id=bidder.id,
        bidder_name=bidder.name,
        bidder_grade=bidder_grade,
        bidder_rating=bidder.rating,
        bidder_points=bidder.points or 0,
        created_at=now,
    )

    if task.mode == AuctionMode.TIME:
        bid.value_time_minutes = int(candidate)
        task.current_time_minutes = int(candidate)
    else:
        bid.value_money = candidate
        task.current_price = candidate

    task.auction_has_bids = True
    task.auction_leader_id = bidder.id
    task.auction_leader_name = bidder.name
    return bid

"""
Currency conversion utilities for the ledger.

Pure functions: rate resolution over an in-memory set of observations and
the rounding rules for money and rates. Database access lives in
``ExchangeRateService``.
"""

import logging
import re
from dataclasses import dataclass
from datetime import date
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Iterable, Optional

# Get structured logger for this module
logger = logging.getLogger(__name__)

MONEY_QUANT = Decimal("0.01")
RATE_QUANT = Decimal("0.00000001")
# DecimalField(max_digits=20, decimal_places=2)
MAX_MONEY = Decimal("1e18")
# DecimalField(max_digits=20, decimal_places=8)
MAX_RATE = Decimal("1e12")
CURRENCY_CODE_RE = re.compile(r"^[A-Z]{3}$")

# Resolution strategies, in priority order
STRATEGY_IDENTITY = "identity"
STRATEGY_EXACT_DIRECT = "exact_direct"
STRATEGY_EXACT_INVERSE = "exact_inverse"
STRATEGY_LATEST_DIRECT = "latest_direct"
STRATEGY_LATEST_INVERSE = "latest_inverse"
STRATEGY_EXPLICIT = "explicit"

APPROXIMATE_STRATEGIES = frozenset({STRATEGY_LATEST_DIRECT, STRATEGY_LATEST_INVERSE})


@dataclass(frozen=True)
class ResolvedRate:
    """
    Outcome of a rate lookup.

    ``rate_date`` is the date of the observation used (None for identity and
    explicit rates). ``is_approximate`` flags a fallback to an observation
    from another date.
    """

    rate: Decimal
    strategy: str
    rate_date: Optional[date] = None

    @property
    def is_approximate(self) -> bool:
        return self.strategy in APPROXIMATE_STRATEGIES


def quantize_money(value) -> Decimal:
    """Round to cents, half up."""
    return Decimal(value).quantize(MONEY_QUANT, rounding=ROUND_HALF_UP)


def quantize_rate(value) -> Decimal:
    """Round a rate to the stored precision (8 places), half up."""
    return Decimal(value).quantize(RATE_QUANT, rounding=ROUND_HALF_UP)


def normalize_currency(code) -> Optional[str]:
    """Uppercase and validate a 3-letter code; returns None when invalid."""
    if not isinstance(code, str):
        return None
    normalized = code.strip().upper()
    return normalized if CURRENCY_CODE_RE.match(normalized) else None


def parse_decimal(value) -> Optional[Decimal]:
    """Parse user input into a finite Decimal; None when not numeric or not finite."""
    if value is None or isinstance(value, bool):
        return None
    try:
        parsed = value if isinstance(value, Decimal) else Decimal(str(value).strip())
    except (InvalidOperation, ValueError):
        return None
    return parsed if parsed.is_finite() else None


def parse_money(value):
    """
    Parse a positive money amount with at most two decimal places.

    Returns:
        tuple: (Decimal or None, error message or None)
    """
    amount = parse_decimal(value)
    if amount is None:
        return None, "Amount must be a valid finite number"
    if amount <= 0:
        return None, "Amount must be positive"
    if amount >= MAX_MONEY:
        return None, "Amount is too large"
    if amount.as_tuple().exponent < -2 and amount != amount.quantize(MONEY_QUANT):
        return None, "Amount cannot have more than 2 decimal places"
    return amount.quantize(MONEY_QUANT), None


def parse_rate(value):
    """
    Parse a positive exchange rate and round it to the stored precision.

    The rounded value must stay positive and fit the rate columns.

    Returns:
        tuple: (Decimal or None, error message or None)
    """
    rate = parse_decimal(value)
    if rate is None:
        return None, "Rate must be a valid finite number"
    if rate <= 0:
        return None, "Rate must be a positive number"
    if rate >= MAX_RATE:
        return None, "Rate is too large"
    rate = quantize_rate(rate)
    if rate <= 0:
        return None, "Rate rounds to zero at 8 decimal places"
    return rate, None


def _latest(observations):
    return max(observations, key=lambda obs: obs.rate_date, default=None)


def find_rate(observations: Iterable, from_currency: str, to_currency: str, on_date: date) -> Optional[ResolvedRate]:
    """
    Resolve the rate converting ``from_currency`` into ``to_currency`` on ``on_date``.

    ``observations`` are objects with ``from_currency``, ``to_currency``,
    ``rate_date`` and ``rate`` (model instances or plain records). First
    match wins:

    1. observation from->to dated ``on_date``
    2. observation to->from dated ``on_date``, inverted
    3. most recent from->to observation by ``rate_date``, any date
    4. most recent to->from observation, inverted

    Zero observations are ignored in every step. Returns None when nothing
    matches. Identical currencies resolve to 1 without looking at the
    observations.
    """
    if from_currency == to_currency:
        return ResolvedRate(rate=Decimal("1"), strategy=STRATEGY_IDENTITY)

    direct = []
    inverse = []
    for obs in observations:
        if Decimal(obs.rate) == 0:
            continue
        if obs.from_currency == from_currency and obs.to_currency == to_currency:
            direct.append(obs)
        elif obs.from_currency == to_currency and obs.to_currency == from_currency:
            inverse.append(obs)

    exact_direct = next((obs for obs in direct if obs.rate_date == on_date), None)
    if exact_direct is not None:
        return ResolvedRate(
            rate=Decimal(exact_direct.rate),
            strategy=STRATEGY_EXACT_DIRECT,
            rate_date=exact_direct.rate_date,
        )

    exact_inverse = next((obs for obs in inverse if obs.rate_date == on_date), None)
    if exact_inverse is not None:
        return ResolvedRate(
            rate=Decimal(1) / Decimal(exact_inverse.rate),
            strategy=STRATEGY_EXACT_INVERSE,
            rate_date=exact_inverse.rate_date,
        )

    latest_direct = _latest(direct)
    if latest_direct is not None:
        logger.debug(
            "Falling back to latest direct rate",
            extra={
                "from_currency": from_currency,
                "to_currency": to_currency,
                "requested_date": on_date.isoformat(),
                "rate_date": latest_direct.rate_date.isoformat(),
                "action": "rate_fallback_latest_direct",
                "component": "find_rate",
            },
        )
        return ResolvedRate(
            rate=Decimal(latest_direct.rate),
            strategy=STRATEGY_LATEST_DIRECT,
            rate_date=latest_direct.rate_date,
        )

    latest_inverse = _latest(inverse)
    if latest_inverse is not None:
        logger.debug(
            "Falling back to latest inverse rate",
            extra={
                "from_currency": from_currency,
                "to_currency": to_currency,
                "requested_date": on_date.isoformat(),
                "rate_date": latest_inverse.rate_date.isoformat(),
                "action": "rate_fallback_latest_inverse",
                "component": "find_rate",
            },
        )
        return ResolvedRate(
            rate=Decimal(1) / Decimal(latest_inverse.rate),
            strategy=STRATEGY_LATEST_INVERSE,
            rate_date=latest_inverse.rate_date,
        )

    logger.debug(
        "No rate observation matches currency pair",
        extra={
            "from_currency": from_currency,
            "to_currency": to_currency,
            "requested_date": on_date.isoformat(),
            "direct_count": len(direct),
            "inverse_count": len(inverse),
            "action": "rate_not_found",
            "component": "find_rate",
        },
    )
    return None


def convert_amount(amount: Decimal, rate: Decimal) -> Decimal:
    """
    Convert ``amount`` with ``rate`` and round to cents.

    Raises:
        ValueError: when the converted amount does not fit a money column
    """
    converted = Decimal(amount) * Decimal(rate)
    if abs(converted) >= MAX_MONEY:
        raise ValueError("Converted amount is too large")
    return quantize_money(converted)

"""Fundamental odds mathematics: the single source of truth.

Every function here is **pure**: no I/O, no logging, no side effects.
Import from this module; never reimplement locally in services.

The pillars exposed are:

1. **Odds conversion**: American ↔ decimal ↔ implied probability.
2. **Fair odds and EV**: model probability → fair American price, and the
   expected profit of a $100 stake at a quoted price.
3. **Vig removal**: proportional normalisation of a two-way prop market.

Design decisions
----------------
* Player-prop markets are quoted in American odds by every US book The Odds
  API aggregates, so every function accepts ``int | float`` American odds.
* Proportional vig removal is used rather than Shin.  Prop markets are
  frequently one-sided (anytime goalscorer has no "No" price at most books),
  and when both sides exist the overround is small enough that the
  favourite-longshot correction is below the model's own noise floor.

Run tests with::

    pytest tests/test_odds_math.py -v
"""

from __future__ import annotations

from typing import Final

# ---------------------------------------------------------------------------
# Module-level constants
# ---------------------------------------------------------------------------

#: American-odds magnitude floor.  The Odds API never returns |odds| < 100;
#: values below this indicate a data error.
_MIN_ODDS_MAGNITUDE: Final[int] = 100

#: Stake used for the expected-value display convention (EV per $100).
EV_STAKE: Final[float] = 100.0


# ---------------------------------------------------------------------------
# Odds conversion
# ---------------------------------------------------------------------------


def american_to_decimal(american: int | float) -> float:
    """Convert American odds to decimal (European) format.

    Decimal odds represent the total payout per unit staked, **including**
    the return of the stake itself.  Examples::

        american_to_decimal(-110) → 1.9091   (risk 110 to win 100)
        american_to_decimal(+150) → 2.5000   (risk 100 to win 150)

    Args:
        american: American odds.  Negative = favourite, positive = underdog.

    Returns:
        Decimal odds ≥ 1.0.

    Raises:
        ValueError: If ``|american| < 100``, which is not a representable
            American odds value.
    """
    if abs(american) < _MIN_ODDS_MAGNITUDE:
        raise ValueError(
            f"Invalid American odds {american!r}: magnitude must be ≥ 100. "
            "Check upstream odds parsing for data errors."
        )
    if american > 0:
        return american / 100.0 + 1.0
    return 100.0 / abs(american) + 1.0


def implied_prob(american: int | float) -> float:
    """Raw implied probability from American odds (vig-inclusive).

    Examples::

        implied_prob(-110) → 0.5238
        implied_prob(+100) → 0.5000
        implied_prob(+150) → 0.4000
    """
    return 1.0 / american_to_decimal(american)


def decimal_to_american(decimal_odds: float) -> int:
    """Convert decimal odds to the nearest American integer.

    Raises:
        ValueError: If ``decimal_odds <= 1.0`` (no profit is representable).
    """
    if decimal_odds <= 1.0:
        raise ValueError(
            f"Decimal odds {decimal_odds!r} must be > 1.0 to map to American odds."
        )
    if decimal_odds >= 2.0:
        return round((decimal_odds - 1.0) * 100)
    return round(-100.0 / (decimal_odds - 1.0))


def prob_to_american(probability: float) -> int:
    """Fair (zero-vig) American price for a probability.

    A 60% outcome is fairly priced at -150; a 40% outcome at +150.  The
    classifier reports this next to the quoted price so the gap is visible.

    Raises:
        ValueError: If ``probability`` is not in ``(0, 1)``.
    """
    if not (0.0 < probability < 1.0):
        raise ValueError(f"probability must be in (0, 1), got {probability!r}.")
    return decimal_to_american(1.0 / probability)


def expected_value_per_100(probability: float, american: int | float) -> float:
    """Expected profit of a $100 stake at ``american`` given a true win probability.

    Example::

        expected_value_per_100(0.60, +100) → 20.0
    """
    profit = (american_to_decimal(american) - 1.0) * EV_STAKE
    return probability * profit - (1.0 - probability) * EV_STAKE


# ---------------------------------------------------------------------------
# Vig removal
# ---------------------------------------------------------------------------


def remove_vig_proportional(
    over_odds: int | float,
    under_odds: int | float,
) -> tuple[float, float]:
    """Return no-vig (over, under) probabilities by proportional normalisation.

    Each raw implied probability is divided by the overround so the pair sums
    to exactly 1.0.

    Example::

        remove_vig_proportional(-110, -110) → (0.5, 0.5)
    """
    raw_over = implied_prob(over_odds)
    raw_under = implied_prob(under_odds)
    total = raw_over + raw_under
    return raw_over / total, raw_under / total

"""Kelly criterion sizing: the single source of truth for stake math.

All functions here are **pure**: no I/O, no logging.

Prop staking in this system is tier-based: the classifier assigns a fixed
fraction of Kelly to each tier (half-Kelly for the best tier down to a tenth
for leans).  :func:`kelly_fraction` turns that multiplier plus a model
probability into a bankroll fraction, and :func:`kelly_to_units` converts it
to the display convention.

Design decisions
----------------
* **Never full Kelly.**  Player-prop probabilities are estimated from small
  per-player samples, and overbetting is punished asymmetrically (geometric
  ruin vs. forgone EV).  The multiplier therefore must be strictly below 1.
* A hard :data:`MAX_KELLY_FRACTION` cap clips extreme edge estimates, which
  on props usually mean a stale line or a missed scratch rather than a real
  edge.

Run tests with::

    pytest tests/test_kelly.py -v
"""

from __future__ import annotations

from typing import Final

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

#: Hard cap on any single stake fraction, irrespective of edge.  Props are
#: low-limit markets; 5% of bankroll on one player outcome is the ceiling.
MAX_KELLY_FRACTION: Final[float] = 0.05

#: Largest Kelly multiplier accepted (exclusive of full Kelly).
MAX_KELLY_MULTIPLIER: Final[float] = 0.5


# ---------------------------------------------------------------------------
# Fractional Kelly
# ---------------------------------------------------------------------------


def kelly_fraction(
    win_prob: float,
    decimal_odds: float,
    *,
    multiplier: float = MAX_KELLY_MULTIPLIER,
    max_fraction: float = MAX_KELLY_FRACTION,
) -> float:
    """Compute a fractional Kelly bet size for a simple win/loss prop.

    Full Kelly for profit ``b`` per unit staked is::

        f*  =  (p · b − q) / b                                   (1)

    and the recommendation is ``f = f* × multiplier``, capped at
    ``max_fraction``.

    Args:
        win_prob: Model probability of the over hitting, in ``(0, 1)``.
        decimal_odds: Decimal odds of the quoted price.
        multiplier: Fraction of full Kelly to stake, in ``[0, 0.5]``.
        max_fraction: Hard cap on the output fraction.

    Returns:
        Bankroll fraction in ``[0, max_fraction]``.  0.0 for negative EV.

    Raises:
        ValueError: If ``win_prob`` is outside ``(0, 1)``, ``decimal_odds``
            is not above 1.0, or ``multiplier`` is outside ``[0, 0.5]``.

    Examples::

        kelly_fraction(0.60, 2.0)                   →  0.05  (half-Kelly, capped)
        kelly_fraction(0.60, 2.0, multiplier=0.10)  →  0.02
        kelly_fraction(0.45, 1.909)                 →  0.0
    """
    if not (0.0 < win_prob < 1.0):
        raise ValueError(
            f"win_prob must be in (0, 1), got {win_prob!r}. "
            "Check upstream probability clipping."
        )
    if decimal_odds <= 1.0:
        raise ValueError(
            f"decimal_odds must be > 1.0 (no profit otherwise), got {decimal_odds!r}."
        )
    if not (0.0 <= multiplier <= MAX_KELLY_MULTIPLIER):
        raise ValueError(
            f"multiplier must be in [0, {MAX_KELLY_MULTIPLIER}], got {multiplier!r}. "
            "Full Kelly is never staked."
        )

    profit_per_unit = decimal_odds - 1.0
    full_kelly = (win_prob * profit_per_unit - (1.0 - win_prob)) / profit_per_unit

    if full_kelly <= 0.0:
        return 0.0

    return min(full_kelly * multiplier, max_fraction)


def kelly_to_units(kelly_fraction_val: float) -> float:
    """Convert a bankroll fraction to units (1 unit = 1% of bankroll).

    Examples::

        kelly_to_units(0.025) → 2.5
    """
    return kelly_fraction_val * 100.0


def units_to_dollars(units: float, bankroll: float) -> float:
    """Convert unit-based sizing to a dollar amount.

    Examples::

        units_to_dollars(2.5, 1000.0)  →  25.0
    """
    return (units / 100.0) * bankroll

"""
Edge-based bet classification and fractional Kelly staking for player props.

Compares the model's probability with the book's implied probability and
assigns one of five ordered tiers:

    BEST > STRONG > STANDARD > LEAN > NONE

Thresholds are per prop type: volume props (shots, saves) tolerate thin
edges, binary high-variance props (anytime goal) need much larger ones.
The stake is a fixed fraction of Kelly per tier; full Kelly is never used.

All thresholds live in ``PROP_THRESHOLDS``; ``get_prop_thresholds`` is the only
function that reads them.
"""

import logging
from dataclasses import dataclass, field
from enum import IntEnum
from typing import Dict, Iterable, List, Optional

from backend.core.kelly import kelly_fraction, kelly_to_units, units_to_dollars
from backend.core.odds_math import (
    american_to_decimal,
    expected_value_per_100,
    implied_prob,
    prob_to_american,
    remove_vig_proportional,
)
from backend.core.records import Forecast, MarketQuote, OutcomeType

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Tiers and thresholds
# ---------------------------------------------------------------------------

class BetTier(IntEnum):
    NONE = 0
    LEAN = 1
    STANDARD = 2
    STRONG = 3
    BEST = 4

    @property
    def label(self) -> str:
        return self.name.lower()


@dataclass(frozen=True)
class PropThresholds:
    min_edge_value: float
    min_edge_strong: float
    min_edge_best: float
    min_games: int
    variance: str


PROP_THRESHOLDS: Dict[OutcomeType, PropThresholds] = {
    OutcomeType.SHOTS: PropThresholds(0.03, 0.05, 0.07, 15, "low"),
    OutcomeType.SAVES: PropThresholds(0.03, 0.05, 0.07, 20, "low"),
    OutcomeType.POINTS: PropThresholds(0.03, 0.05, 0.08, 20, "medium"),
    OutcomeType.GOALSCORER: PropThresholds(0.05, 0.07, 0.10, 30, "high"),
    OutcomeType.ASSISTS: PropThresholds(0.04, 0.06, 0.08, 20, "high"),
}

MIN_PROB_LEAN = 0.50
MIN_PROB_HIGH = 0.55
MIN_CONFIDENCE_STANDARD = 0.50
MIN_CONFIDENCE_STRONG = 0.65
MIN_CONFIDENCE_BEST = 0.75
SUSPICIOUS_EDGE = 0.25

#: Edges are compared at this many decimals so 0.60 - 0.50 meets a 0.10 bar.
EDGE_PRECISION = 9

KELLY_FRACTIONS: Dict[BetTier, float] = {
    BetTier.BEST: 0.50,
    BetTier.STRONG: 0.25,
    BetTier.STANDARD: 0.15,
    BetTier.LEAN: 0.10,
    BetTier.NONE: 0.0,
}


def get_prop_thresholds(outcome_type: OutcomeType) -> PropThresholds:
    return PROP_THRESHOLDS[outcome_type]


# ---------------------------------------------------------------------------
# Verdict
# ---------------------------------------------------------------------------

@dataclass
class BetVerdict:
    """Classification of one forecast against one (optional) quote."""

    forecast: Forecast
    quote: Optional[MarketQuote]
    tier: BetTier = BetTier.NONE
    stake_fraction: float = 0.0
    implied_probability: float = 0.0
    market_probability: float = 0.0
    edge: float = 0.0
    expected_value: float = 0.0
    fair_odds: int = 0
    needs_review: bool = False
    rationale: List[str] = field(default_factory=list)

    @property
    def is_actionable(self) -> bool:
        return self.tier >= BetTier.STANDARD


def classify_bet(forecast: Forecast, quote: Optional[MarketQuote] = None) -> BetVerdict:
    """Assign a tier and Kelly fraction to a forecast.

    Without a quote only LEAN is reachable, gated on probability,
    confidence and sample size.  With a quote the first matching tier of
    BEST, STRONG, STANDARD, LEAN wins.  Edges at or above
    ``SUSPICIOUS_EDGE`` keep their tier but are flagged for review.
    """
    thresholds = get_prop_thresholds(forecast.outcome_type)
    probability = forecast.probability
    confidence = forecast.confidence

    verdict = BetVerdict(
        forecast=forecast,
        quote=quote,
        fair_odds=prob_to_american(probability),
    )

    sample_ok = forecast.games_played >= thresholds.min_games
    if not sample_ok:
        verdict.rationale.append(
            f"Low sample: {forecast.games_played}/{thresholds.min_games} games"
        )

    if quote is None:
        if probability >= MIN_PROB_LEAN and confidence >= MIN_CONFIDENCE_STANDARD and sample_ok:
            verdict.tier = BetTier.LEAN
            verdict.rationale.append(f"High probability: {probability:.1%}")
            verdict.rationale.append("No book odds available")
        verdict.stake_fraction = KELLY_FRACTIONS[verdict.tier]
        return verdict

    verdict.implied_probability = implied_prob(quote.over_price)
    verdict.market_probability = verdict.implied_probability
    if quote.under_price is not None:
        verdict.market_probability, _ = remove_vig_proportional(quote.over_price, quote.under_price)
    verdict.edge = round(probability - verdict.implied_probability, EDGE_PRECISION)
    verdict.expected_value = round(expected_value_per_100(probability, quote.over_price), 2)
    edge = verdict.edge

    if edge >= SUSPICIOUS_EDGE:
        verdict.needs_review = True
        verdict.rationale.append(f"Edge unusually high ({edge:+.1%}); verify line and lineup")

    if edge >= thresholds.min_edge_best and confidence >= MIN_CONFIDENCE_BEST and sample_ok:
        verdict.tier = BetTier.BEST
        verdict.rationale.append(
            f"Best bet: {edge:+.1%} edge (min {thresholds.min_edge_best:.0%} for {forecast.outcome_type.value})"
        )
        verdict.rationale.append(f"High confidence: {confidence:.0%}")
    elif edge >= thresholds.min_edge_strong and confidence >= MIN_CONFIDENCE_STRONG and sample_ok:
        verdict.tier = BetTier.STRONG
        verdict.rationale.append(f"Strong value: {edge:+.1%} edge")
    elif edge >= thresholds.min_edge_value and confidence >= MIN_CONFIDENCE_STANDARD and sample_ok:
        verdict.tier = BetTier.STANDARD
        verdict.rationale.append(
            f"Value: {edge:+.1%} edge (min {thresholds.min_edge_value:.0%} for {forecast.outcome_type.value})"
        )
    elif probability >= MIN_PROB_HIGH and confidence >= MIN_CONFIDENCE_STANDARD and edge > 0:
        verdict.tier = BetTier.LEAN
        verdict.rationale.append(f"Lean: {probability:.1%} probability, small edge {edge:+.1%}")

    if verdict.tier > BetTier.NONE:
        verdict.rationale.append(f"EV: {verdict.expected_value:+.2f}/100")
        if quote.under_price is not None:
            verdict.rationale.append(f"No-vig market: {verdict.market_probability:.1%}")
        if thresholds.variance == "high":
            verdict.rationale.append(f"{forecast.outcome_type.value}: high variance prop")

    verdict.stake_fraction = KELLY_FRACTIONS[verdict.tier]
    return verdict


# ---------------------------------------------------------------------------
# Portfolio helpers
# ---------------------------------------------------------------------------

def stake_units(verdict: BetVerdict) -> float:
    """Recommended units (1u = 1% bankroll) at the verdict's Kelly fraction."""
    if verdict.quote is None or verdict.stake_fraction <= 0:
        return 0.0
    fraction = kelly_fraction(
        verdict.forecast.probability,
        american_to_decimal(verdict.quote.over_price),
        multiplier=verdict.stake_fraction,
    )
    return round(kelly_to_units(fraction), 2)


def stake_dollars(verdict: BetVerdict, bankroll: float) -> float:
    return round(units_to_dollars(stake_units(verdict), bankroll), 2)


def sort_bets_by_quality(verdicts: Iterable[BetVerdict]) -> List[BetVerdict]:
    """Best tier first, then larger edge, then higher confidence."""
    return sorted(
        verdicts,
        key=lambda v: (v.tier, v.edge, v.forecast.confidence),
        reverse=True,
    )


def filter_actionable_bets(verdicts: Iterable[BetVerdict]) -> List[BetVerdict]:
    """Verdicts worth staking (STANDARD and above)."""
    return [v for v in verdicts if v.is_actionable]


def summarize_bets(verdicts: Iterable[BetVerdict]) -> Dict[str, float]:
    verdicts = list(verdicts)
    counts = {tier.label: 0 for tier in BetTier}
    for v in verdicts:
        counts[v.tier.label] += 1
    actionable = filter_actionable_bets(verdicts)
    avg_edge = sum(v.edge for v in actionable) / len(actionable) if actionable else 0.0
    return {
        **counts,
        "total": len(verdicts),
        "actionable": len(actionable),
        "needs_review": sum(1 for v in verdicts if v.needs_review),
        "avg_edge": round(avg_edge, 4),
        "total_ev": round(sum(v.expected_value for v in actionable), 2),
    }

"""
NHL player prop probability model.

Converts a player's production history plus matchup context into an
expected count (lambda), a probability of clearing the prop line and a
confidence score.

Pipeline per outcome type:
- Base rate: 60% recent window (last 5 games) / 40% season
- Sequential bounded multipliers, always in this order:
    trend -> power play -> opposing goalie -> location -> opposing team
    -> teammate availability
- Probability: Poisson for goals/assists/points, normal approximation
  (sd = sqrt(lambda) * 0.8) for shots and saves
- Confidence: sample-size and production-tier increments, capped

Each outcome type is described by a row of ``FACTOR_TABLES``; the model
itself has no per-type branches.
"""

import logging
import math
from dataclasses import dataclass, replace
from typing import Dict, Optional, Tuple

import numpy as np
from scipy.stats import norm, poisson

from backend.core.records import (
    Forecast,
    OutcomeType,
    ProductionRecord,
    ScopeAggregate,
)
from backend.core.sport_config import SportConfig

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Factor tables
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class TrendRule:
    """``base + weight * clip(recent / season of stat, lo, hi)``."""
    stat: str
    base: float
    weight: float
    lo: float
    hi: float


@dataclass(frozen=True)
class CounterpartRule:
    """``clip(1 + (league_sv - opp_sv) * sensitivity, lo, hi)``."""
    sensitivity: float
    lo: float
    hi: float


@dataclass(frozen=True)
class OpponentRule:
    """Opposing-team strength.

    ``ratio`` mode: ``clip(opp_metric / league_baseline, lo, hi)``.
    ``step`` mode: ``high`` above ``high_cut``, ``low`` below ``low_cut``.
    """
    metric: str
    mode: str = "ratio"
    lo: float = 1.0
    hi: float = 1.0
    high: float = 1.0
    low: float = 1.0
    high_cut: float = 3.3
    low_cut: float = 2.7


@dataclass(frozen=True)
class OutcomeModel:
    quality_min: float
    default_line: float
    distribution: str
    trend: TrendRule
    location: Tuple[float, float]
    opponent: OpponentRule
    power_play: Optional[Tuple[float, float]] = None
    counterpart: Optional[CounterpartRule] = None


# Power-play TOI cut-offs (minutes per game) for the high/low bonus.
PP_HIGH_MINUTES = 4.0
PP_LOW_MINUTES = 2.5

FACTOR_TABLES: Dict[OutcomeType, OutcomeModel] = {
    OutcomeType.GOALSCORER: OutcomeModel(
        quality_min=0.15,
        default_line=0.5,
        distribution="poisson",
        trend=TrendRule("shots", 0.7, 0.3, 0.7, 1.3),
        power_play=(1.20, 1.10),
        counterpart=CounterpartRule(3.0, 0.80, 1.25),
        location=(1.05, 0.95),
        opponent=OpponentRule("goals_against_per_game", mode="ratio", lo=0.85, hi=1.20),
    ),
    OutcomeType.SHOTS: OutcomeModel(
        quality_min=1.5,
        default_line=2.5,
        distribution="normal",
        trend=TrendRule("shots", 0.8, 0.2, 0.8, 1.2),
        power_play=(1.15, 1.08),
        location=(1.03, 0.97),
        opponent=OpponentRule("goals_against_per_game", mode="step", high=1.05, low=0.95),
    ),
    OutcomeType.ASSISTS: OutcomeModel(
        quality_min=0.15,
        default_line=0.5,
        distribution="poisson",
        trend=TrendRule("points", 0.75, 0.25, 0.75, 1.25),
        power_play=(1.25, 1.12),
        counterpart=CounterpartRule(2.0, 0.85, 1.20),
        location=(1.04, 0.96),
        opponent=OpponentRule("goals_against_per_game", mode="step", high=1.15, low=0.88),
    ),
    OutcomeType.POINTS: OutcomeModel(
        quality_min=0.25,
        default_line=0.5,
        distribution="poisson",
        trend=TrendRule("points", 0.75, 0.25, 0.75, 1.25),
        power_play=(1.22, 1.11),
        counterpart=CounterpartRule(2.5, 0.85, 1.20),
        location=(1.05, 0.95),
        opponent=OpponentRule("goals_against_per_game", mode="step", high=1.18, low=0.85),
    ),
    OutcomeType.SAVES: OutcomeModel(
        quality_min=20.0,
        default_line=24.5,
        distribution="normal",
        trend=TrendRule("saves", 0.8, 0.2, 0.8, 1.2),
        location=(1.02, 0.98),
        opponent=OpponentRule("shots_for_per_game", mode="ratio", lo=0.85, hi=1.20),
    ),
}

# Confidence increments: (threshold, bonus), checked highest first.
CONFIDENCE_BASE = 0.50
CONFIDENCE_CEILING = 0.95
SAMPLE_BONUSES = ((40, 0.15), (25, 0.10), (15, 0.05))
PRODUCTION_BONUSES = ((3.0, 0.15), (2.0, 0.10), (1.0, 0.05))


@dataclass
class MatchupContext:
    """Situational inputs for one game.  ``None`` means neutral."""

    is_home: Optional[bool] = None
    opponent: Optional[ScopeAggregate] = None
    opponent_scope: str = ""
    teammate_multiplier: float = 1.0


# ---------------------------------------------------------------------------
# Distributions
# ---------------------------------------------------------------------------

def prob_at_least_one(lam: float) -> float:
    """P(X >= 1) for X ~ Poisson(lam), i.e. ``1 - exp(-lam)``."""
    return -math.expm1(-max(lam, 0.0))


def poisson_over(lam: float, line: float) -> float:
    """P(X > line) for X ~ Poisson(lam) and a half-point (or integer) line."""
    if lam <= 0:
        return 0.0
    if line < 1:
        return prob_at_least_one(lam)
    return float(poisson.sf(math.floor(line), lam))


def normal_over(lam: float, line: float, sd_scale: float = 0.8) -> float:
    """P(X > line) under ``N(lam, (sqrt(lam) * sd_scale)^2)``."""
    sd = math.sqrt(max(lam, 0.0)) * sd_scale
    if sd <= 0:
        return 0.0
    return float(norm.sf((line - lam) / sd))


# ---------------------------------------------------------------------------
# Model
# ---------------------------------------------------------------------------

class PropModel:
    """Generic prop model driven by ``FACTOR_TABLES``."""

    def __init__(self, config: Optional[SportConfig] = None, tables: Optional[Dict] = None):
        self.config = config or SportConfig.nhl()
        self.tables = tables or FACTOR_TABLES

    # -- building blocks ------------------------------------------------

    def base_rate(self, record: ProductionRecord, stat: str) -> float:
        """Recent/season blend.  Season only when the recent window is empty."""
        season = record.season_rate(stat)
        if record.recent_games <= 0:
            return season
        recent = record.recent_rate(stat)
        return self.config.recent_weight * recent + self.config.season_weight * season

    def trend_factor(self, record: ProductionRecord, rule: TrendRule) -> float:
        # A recent window with nothing in it is no signal, not a slump
        season = record.season_rate(rule.stat)
        recent = record.recent_rate(rule.stat)
        if season <= 0 or recent <= 0:
            return 1.0
        ratio = recent / season
        return rule.base + rule.weight * float(np.clip(ratio, rule.lo, rule.hi))

    @staticmethod
    def power_play_factor(record: ProductionRecord, bonus: Optional[Tuple[float, float]]) -> float:
        if bonus is None:
            return 1.0
        minutes = record.avg_pp_toi_minutes
        if record.recent_games > 0:
            minutes = (minutes + record.recent_avg_pp_toi_seconds / 60.0) / 2
        if minutes >= PP_HIGH_MINUTES:
            return bonus[0]
        if minutes >= PP_LOW_MINUTES:
            return bonus[1]
        return 1.0

    def counterpart_factor(self, context: MatchupContext, rule: Optional[CounterpartRule]) -> float:
        if rule is None or context.opponent is None or context.opponent.save_pct <= 0:
            return 1.0
        diff = self.config.league_save_pct - context.opponent.save_pct
        return float(np.clip(1.0 + diff * rule.sensitivity, rule.lo, rule.hi))

    @staticmethod
    def location_factor(context: MatchupContext, location: Tuple[float, float]) -> float:
        if context.is_home is None:
            return 1.0
        return location[0] if context.is_home else location[1]

    def opponent_factor(self, context: MatchupContext, rule: OpponentRule) -> float:
        if context.opponent is None:
            return 1.0
        value = getattr(context.opponent, rule.metric)
        if rule.mode == "step":
            if value > rule.high_cut:
                return rule.high
            if value < rule.low_cut:
                return rule.low
            return 1.0
        baseline = (
            self.config.league_shots_per_game
            if rule.metric.startswith("shots")
            else self.config.league_goals_against
        )
        return float(np.clip(value / baseline, rule.lo, rule.hi))

    def confidence(self, games_played: int, season_rate: float, quality_min: float) -> float:
        score = CONFIDENCE_BASE
        for threshold, bonus in SAMPLE_BONUSES:
            if games_played >= threshold:
                score += bonus
                break
        if quality_min > 0:
            for multiple, bonus in PRODUCTION_BONUSES:
                if season_rate >= quality_min * multiple:
                    score += bonus
                    break
        return min(score, CONFIDENCE_CEILING)

    def probability_for_line(self, outcome_type: OutcomeType, lam: float, line: float) -> float:
        """Probability of clearing ``line``, clipped to the configured band."""
        table = self.tables[outcome_type]
        if table.distribution == "normal":
            raw = normal_over(lam, line, self.config.normal_sd_scale)
        else:
            raw = poisson_over(lam, line)
        return float(np.clip(raw, self.config.min_probability, self.config.max_probability))

    # -- public ---------------------------------------------------------

    def is_eligible(self, record: ProductionRecord, outcome_type: OutcomeType) -> bool:
        """Quality filter: sample size, position and minimum season rate."""
        if record.is_goalie != outcome_type.is_goalie_market:
            return False
        if record.games_played < self.config.min_games:
            return False
        return record.season_rate(outcome_type.stat) >= self.tables[outcome_type].quality_min

    def forecast(
        self,
        record: ProductionRecord,
        outcome_type: OutcomeType,
        context: Optional[MatchupContext] = None,
        line: Optional[float] = None,
    ) -> Optional[Forecast]:
        """Forecast one player for one outcome type.

        Returns None when the player fails the quality filter; callers skip
        the player rather than publish a forced default.
        """
        if not self.is_eligible(record, outcome_type):
            return None

        context = context or MatchupContext()
        table = self.tables[outcome_type]
        stat = outcome_type.stat
        line = table.default_line if line is None else line

        base = self.base_rate(record, stat)
        factors = {
            "trend": self.trend_factor(record, table.trend),
            "power_play": self.power_play_factor(record, table.power_play),
            "counterpart": self.counterpart_factor(context, table.counterpart),
            "location": self.location_factor(context, table.location),
            "opponent": self.opponent_factor(context, table.opponent),
            "teammates": context.teammate_multiplier,
        }

        lam = base
        for value in factors.values():
            lam *= value
        lam = max(lam, 0.0)

        season = record.season_rate(stat)
        return Forecast(
            entity_id=record.entity_id,
            name=record.name,
            scope=record.scope,
            opponent=context.opponent_scope,
            outcome_type=outcome_type,
            line=line,
            expected_value=lam,
            probability=self.probability_for_line(outcome_type, lam, line),
            confidence=self.confidence(record.games_played, season, table.quality_min),
            games_played=record.games_played,
            season_rate=season,
            distribution=table.distribution,
            factors={"base_rate": base, **factors},
        )

    def reprice(self, forecast: Forecast, line: float) -> Forecast:
        """Same forecast evaluated at a different line."""
        if line == forecast.line:
            return forecast
        probability = self.probability_for_line(forecast.outcome_type, forecast.expected_value, line)
        return replace(forecast, line=line, probability=probability)

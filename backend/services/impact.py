"""
Team-level impact of unavailable players.

Turns the consensus-unavailable players of one team into bounded adjustments
on that team's aggregates:

    1. Importance: a [0, 1] score from points share, time-on-ice rank and
       position, bucketed into five tiers (tier 1 = franchise player).
    2. Per-player impact: win probability, power play and penalty kill.
    3. Compounding: several players out at once hurts more than the sum.
    4. Concentration: losing the only scorer on a one-star team hurts more
       than losing one of three stars.
    5. Clamps on every aggregate category.

Everything is recomputed from scratch each cycle; a ``ScopeImpact`` is never
patched in place.
"""

import logging
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional, Tuple

import numpy as np

from backend.core.records import ProductionRecord
from backend.core.sport_config import SportConfig
from backend.services.names import match_player
from backend.services.reconciliation import ConsensusVerdict

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

# Relative replacement difficulty by position.
POSITION_VALUE: Dict[str, float] = {
    "G": 1.5, "D": 1.2, "C": 1.1, "LW": 1.0, "RW": 1.0, "F": 1.05,
}

# Win-probability swing of a score-1.0 player at each position.
MAX_WIN_PROB_IMPACT: Dict[str, float] = {
    "G": 0.10, "D": 0.07, "C": 0.06, "LW": 0.05, "RW": 0.05, "F": 0.05,
}

# Lower score bound of tiers 1-4; anything below is tier 5.
TIER_THRESHOLDS: Tuple[float, ...] = (0.70, 0.50, 0.35, 0.20)

# Multiplier by simultaneous unavailable count; 5+ uses the last entry.
COMPOUNDING_STEPS: Tuple[float, ...] = (1.0, 1.0, 1.15, 1.30, 1.50, 1.75)
LOST_GAMES_THRESHOLD = 30
LOST_GAMES_SCALE = 1.1
COMPOUNDING_CAP = 2.0
DEFAULT_GAMES_MISSED = 5

CONCENTRATION_MULTIPLIERS: Dict[str, float] = {
    "extreme": 1.4,   # one star, no credible #2
    "high": 1.25,     # one star with a credible #2
    "medium": 1.0,    # two or more stars
    "low": 0.8,       # balanced scoring
}
STAR_SHARE = 0.20
SECONDARY_SHARE = 0.15

# Symmetric clamp bounds per adjustment category.
WIN_PROB_BOUND = 0.30
POWER_PLAY_BOUND = 0.15
PENALTY_KILL_BOUND = 0.10
GOALS_BOUND = 0.5

CENTER_GOALS_FOR_DELTA = -0.15
DEFENSE_GOALS_AGAINST_DELTA = 0.20
LINE_PROMOTIONS_PER_CENTER = 3

PLACEHOLDER_SKATER_SCORE = 0.35
PLACEHOLDER_GOALIE_SCORE = 0.50

ELITE_BACKUP_SAVE_PCT = 0.913
TOP_LINE_RANK = 6

LINEMATE_DROP_BY_TIER: Dict[int, float] = {1: 0.65, 2: 0.75, 3: 0.85, 4: 0.95, 5: 1.0}
LINEMATES_AFFECTED = 4
LINE_PROMOTION_PENALTY = 0.85
TEAMMATE_MULTIPLIER_FLOOR = 0.5

BACK_TO_BACK_FACTOR = 0.95


# ---------------------------------------------------------------------------
# Data structures
# ---------------------------------------------------------------------------

@dataclass
class ImportanceRating:
    name: str
    position: str
    score: float
    tier: int
    points_share: float = 0.0
    time_rank: int = 0
    placeholder: bool = False


@dataclass
class EntityImpact:
    rating: ImportanceRating
    win_prob: float
    power_play: float
    penalty_kill: float


@dataclass
class Concentration:
    level: str
    multiplier: float
    top_share: float = 0.0
    second_share: float = 0.0
    star_count: int = 0
    secondary_count: int = 0


@dataclass
class ScopeImpact:
    """Impact record for one team in one reconciliation cycle."""

    scope: str
    entities: List[EntityImpact] = field(default_factory=list)
    win_prob: float = 0.0
    power_play: float = 0.0
    penalty_kill: float = 0.0
    goals_for: float = 0.0
    goals_against: float = 0.0
    compounding: float = 1.0
    concentration: Optional[Concentration] = None
    concentration_applied: float = 1.0
    lost_games: int = 0
    line_promotions: int = 0
    defense_disruption: float = 0.0
    goalie_situation: str = "starter"
    stars_out: List[str] = field(default_factory=list)
    affected_linemates: Dict[str, float] = field(default_factory=dict)

    @property
    def unavailable_count(self) -> int:
        return len(self.entities)

    def breakdown(self) -> Dict[str, float]:
        return {
            "unavailable": self.unavailable_count,
            "compounding": round(self.compounding, 3),
            "concentration": round(self.concentration_applied, 3),
            "lost_games": self.lost_games,
            "line_promotions": self.line_promotions,
        }

    def summary(self) -> str:
        if not self.entities:
            return "Healthy"
        parts = [f"{self.unavailable_count} out"]
        if self.stars_out:
            parts.append("stars: " + ", ".join(self.stars_out))
        if self.goalie_situation != "starter":
            parts.append(f"goalie: {self.goalie_situation}")
        if self.compounding > 1.1:
            parts.append(f"compounding x{self.compounding:.2f}")
        return "; ".join(parts)


# ---------------------------------------------------------------------------
# Importance
# ---------------------------------------------------------------------------

def importance_tier(score: float) -> int:
    for tier, threshold in enumerate(TIER_THRESHOLDS, start=1):
        if score >= threshold:
            return tier
    return 5


def _skaters(roster: Iterable[ProductionRecord]) -> List[ProductionRecord]:
    return [p for p in roster if not p.is_goalie]


def _goalies(roster: Iterable[ProductionRecord]) -> List[ProductionRecord]:
    return sorted(
        (p for p in roster if p.is_goalie),
        key=lambda g: (g.games_started or g.games_played),
        reverse=True,
    )


def _team_points(roster: Iterable[ProductionRecord]) -> int:
    return sum(p.points for p in _skaters(roster)) or 1


def time_rank(player: ProductionRecord, roster: Iterable[ProductionRecord]) -> int:
    """1-based average-TOI rank among skaters (0 when not on the roster)."""
    ordered = sorted(_skaters(roster), key=lambda p: p.avg_toi_seconds, reverse=True)
    for rank, p in enumerate(ordered, start=1):
        if p.entity_id == player.entity_id:
            return rank
    return 0


def skater_importance(player: ProductionRecord, roster: List[ProductionRecord]) -> ImportanceRating:
    share = player.points / _team_points(roster)
    rank = time_rank(player, roster)
    score = share * 2
    if 0 < rank <= TOP_LINE_RANK:
        score += 0.15
    if player.position == "C":
        score += 0.05
    elif player.position == "D":
        score += 0.10
    score = min(score, 1.0)
    return ImportanceRating(
        name=player.name,
        position=player.position,
        score=score,
        tier=importance_tier(score),
        points_share=share,
        time_rank=rank,
    )


def goalie_importance(
    goalie: ProductionRecord,
    roster: List[ProductionRecord],
    config: SportConfig,
) -> ImportanceRating:
    goalies = _goalies(roster)
    is_starter = bool(goalies) and goalies[0].entity_id == goalie.entity_id
    score = 0.5
    if is_starter:
        score += 0.3
    if goalie.save_pct > config.league_save_pct + 0.01:
        score += 0.2
    if goalie.games_played > 30:
        score += 0.1
    score = min(score, 1.0)
    return ImportanceRating(
        name=goalie.name,
        position="G",
        score=score,
        tier=importance_tier(score),
        time_rank=1 if is_starter else 2,
    )


def placeholder_importance(name: str, position: str) -> ImportanceRating:
    """Conservative rating for a player missing from the team's stats."""
    score = PLACEHOLDER_GOALIE_SCORE if position == "G" else PLACEHOLDER_SKATER_SCORE
    return ImportanceRating(
        name=name,
        position=position,
        score=score,
        tier=importance_tier(score),
        placeholder=True,
    )


def entity_impact(rating: ImportanceRating, player: Optional[ProductionRecord] = None) -> EntityImpact:
    """Signed per-player adjustments from an importance rating."""
    position = rating.position if rating.position in POSITION_VALUE else "F"
    win_prob = -(rating.score * MAX_WIN_PROB_IMPACT[position] * POSITION_VALUE[position])

    if position == "G":
        return EntityImpact(rating=rating, win_prob=win_prob, power_play=0.0, penalty_kill=win_prob * 0.3)

    if player is not None and player.points > 0 and player.pp_points > 0:
        pp_share = player.pp_points / player.points * 0.3
    else:
        pp_share = 0.1
    pk_share = 0.15 if position in ("C", "D") else 0.05
    return EntityImpact(
        rating=rating,
        win_prob=win_prob,
        power_play=-(pp_share * rating.score * 0.1),
        penalty_kill=-(pk_share * rating.score * 0.05),
    )


# ---------------------------------------------------------------------------
# Compounding and concentration
# ---------------------------------------------------------------------------

def compounding_factor(unavailable_count: int, lost_games: int = 0) -> float:
    """Superlinear multiplier for simultaneous absences.

    Non-decreasing in ``unavailable_count``; the lost-games scale-up only
    ever raises it.  Capped at ``COMPOUNDING_CAP``.
    """
    if unavailable_count <= 0:
        return 1.0
    step = COMPOUNDING_STEPS[min(unavailable_count, len(COMPOUNDING_STEPS) - 1)]
    if lost_games > LOST_GAMES_THRESHOLD:
        step *= LOST_GAMES_SCALE
    return min(step, COMPOUNDING_CAP)


def star_concentration(roster: List[ProductionRecord]) -> Concentration:
    """How dependent a team's scoring is on its top contributors."""
    skaters = sorted(_skaters(roster), key=lambda p: p.points, reverse=True)
    if not skaters:
        return Concentration(level="low", multiplier=1.0)

    total = _team_points(roster)
    shares = [p.points / total for p in skaters]
    top = shares[0]
    second = shares[1] if len(shares) > 1 else 0.0
    stars = sum(1 for s in shares if s >= STAR_SHARE)
    secondary = sum(1 for s in shares if SECONDARY_SHARE <= s < STAR_SHARE)
    has_secondary = second >= SECONDARY_SHARE

    if stars == 1 and not has_secondary:
        level = "extreme"
    elif stars == 1:
        level = "high"
    elif stars >= 2:
        level = "medium"
    else:
        level = "low"

    return Concentration(
        level=level,
        multiplier=CONCENTRATION_MULTIPLIERS[level],
        top_share=top,
        second_share=second,
        star_count=stars,
        secondary_count=secondary,
    )


# ---------------------------------------------------------------------------
# Team impact
# ---------------------------------------------------------------------------

def _find_record(name: str, roster: List[ProductionRecord]) -> Optional[ProductionRecord]:
    matched = match_player(name, [p.name for p in roster])
    if matched is None:
        return None
    return next(p for p in roster if p.name == matched)


def quantify_scope_impact(
    scope: str,
    roster: List[ProductionRecord],
    unavailable: List[ConsensusVerdict],
    config: Optional[SportConfig] = None,
) -> ScopeImpact:
    """Compute the full impact record for one team.

    Args:
        scope: Team abbreviation.
        roster: Production records for the team (skaters and goalies).
        unavailable: Verdicts the active policy treats as unavailable.
        config: League constants (league save pct for goalie scoring).
    """
    config = config or SportConfig.nhl()
    impact = ScopeImpact(scope=scope)
    if not unavailable:
        return impact

    concentration = star_concentration(roster)
    impact.concentration = concentration
    out_ids = set()
    centers_out = defense_out = goalies_out = 0
    star_skater_out = False

    for verdict in unavailable:
        record = verdict.record
        position = record.position if record is not None else "F"
        player = _find_record(verdict.name, roster)
        if player is not None:
            position = player.position
            out_ids.add(player.entity_id)

        if player is None:
            rating = placeholder_importance(verdict.name, position)
            logger.debug("No stats for %s (%s); using placeholder impact", verdict.name, scope)
        elif position == "G":
            rating = goalie_importance(player, roster, config)
        else:
            rating = skater_importance(player, roster)

        entity = entity_impact(rating, player)

        if position == "G":
            goalies_out += 1
            if player is not None and rating.time_rank == 1:
                impact.goalie_situation = "backup"
                backups = [g for g in _goalies(roster) if g.entity_id != player.entity_id]
                if backups and backups[0].save_pct >= ELITE_BACKUP_SAVE_PCT:
                    impact.goalie_situation = "elite backup"
                    entity.win_prob *= 0.5
                    entity.penalty_kill *= 0.5
        else:
            if position == "C":
                centers_out += 1
            elif position == "D":
                defense_out += 1
            if rating.tier <= 2:
                star_skater_out = True
            if player is not None and rating.tier <= 3 and player.avg_toi_seconds > 0:
                _mark_linemates(impact, player, roster, rating.tier)

        if rating.tier <= 2:
            impact.stars_out.append(f"{verdict.name} (T{rating.tier})")

        impact.entities.append(entity)
        games_missed = record.games_missed if record is not None else DEFAULT_GAMES_MISSED
        impact.lost_games += games_missed

    if goalies_out >= 2:
        impact.goalie_situation = "emergency"

    impact.line_promotions = centers_out * LINE_PROMOTIONS_PER_CENTER
    impact.defense_disruption = min(defense_out * 0.3, 1.0)
    goals_for = CENTER_GOALS_FOR_DELTA * centers_out
    goals_against = DEFENSE_GOALS_AGAINST_DELTA * defense_out

    impact.compounding = compounding_factor(len(impact.entities), impact.lost_games)
    impact.concentration_applied = concentration.multiplier if star_skater_out else 1.0

    win_prob = sum(e.win_prob for e in impact.entities)
    power_play = sum(e.power_play for e in impact.entities)
    penalty_kill = sum(e.penalty_kill for e in impact.entities)

    impact.win_prob = float(np.clip(
        win_prob * impact.compounding * impact.concentration_applied, -WIN_PROB_BOUND, WIN_PROB_BOUND
    ))
    impact.power_play = float(np.clip(power_play * impact.compounding, -POWER_PLAY_BOUND, POWER_PLAY_BOUND))
    impact.penalty_kill = float(np.clip(penalty_kill * impact.compounding, -PENALTY_KILL_BOUND, PENALTY_KILL_BOUND))
    impact.goals_for = float(np.clip(goals_for, -GOALS_BOUND, GOALS_BOUND))
    impact.goals_against = float(np.clip(goals_against, -GOALS_BOUND, GOALS_BOUND))

    # Linemates who are themselves out are not "affected" teammates.
    for entity_id in out_ids:
        impact.affected_linemates.pop(entity_id, None)

    logger.info(
        "%s impact: %d out, win prob %+.3f (compounding %.2f, concentration %.2f)",
        scope, len(impact.entities), impact.win_prob, impact.compounding, impact.concentration_applied,
    )
    return impact


def _mark_linemates(
    impact: ScopeImpact,
    player: ProductionRecord,
    roster: List[ProductionRecord],
    tier: int,
) -> None:
    drop = LINEMATE_DROP_BY_TIER[tier]
    mates = sorted(
        (p for p in _skaters(roster) if p.entity_id != player.entity_id and p.avg_toi_seconds > 0),
        key=lambda p: p.avg_toi_seconds,
        reverse=True,
    )[:LINEMATES_AFFECTED]
    for mate in mates:
        impact.affected_linemates[mate.entity_id] = impact.affected_linemates.get(mate.entity_id, 1.0) * drop


def teammate_multiplier(impact: Optional[ScopeImpact], entity_id: str) -> float:
    """Production multiplier for a healthy player given the team's absences."""
    if impact is None or not impact.entities:
        return 1.0
    multiplier = impact.affected_linemates.get(entity_id, 1.0)
    if impact.line_promotions > 0 or impact.unavailable_count > 1:
        multiplier *= LINE_PROMOTION_PENALTY
    return max(multiplier, TEAMMATE_MULTIPLIER_FLOOR)


# ---------------------------------------------------------------------------
# Game level
# ---------------------------------------------------------------------------

def _back_to_back(adjustment: float, impact: Optional[ScopeImpact], is_b2b: bool) -> float:
    if not is_b2b or impact is None or not impact.entities:
        return adjustment
    compounded = (1.0 + adjustment) * BACK_TO_BACK_FACTOR - 1.0
    return float(np.clip(compounded, -WIN_PROB_BOUND, WIN_PROB_BOUND))


def game_adjustments(
    home: Optional[ScopeImpact],
    away: Optional[ScopeImpact],
    *,
    home_back_to_back: bool = False,
    away_back_to_back: bool = False,
) -> dict:
    """Combine both teams' impacts into game-level adjustments."""
    home_adj = _back_to_back(home.win_prob if home else 0.0, home, home_back_to_back)
    away_adj = _back_to_back(away.win_prob if away else 0.0, away, away_back_to_back)

    warnings = []
    for side in (home, away):
        if side is not None and side.concentration is not None and side.concentration.level == "extreme":
            warnings.append(f"{side.scope}: extreme star dependency")

    def total(side: Optional[ScopeImpact]) -> float:
        return (side.goals_for + side.goals_against) if side else 0.0

    return {
        "home_win_prob": home_adj,
        "away_win_prob": away_adj,
        "home_power_play": home.power_play if home else 0.0,
        "away_power_play": away.power_play if away else 0.0,
        "home_penalty_kill": home.penalty_kill if home else 0.0,
        "away_penalty_kill": away.penalty_kill if away else 0.0,
        "expected_total_delta": total(home) + total(away),
        "home_summary": home.summary() if home else "Healthy",
        "away_summary": away.summary() if away else "Healthy",
        "home_stars_out": list(home.stars_out) if home else [],
        "away_stars_out": list(away.stars_out) if away else [],
        "home_goalie": home.goalie_situation if home else "unknown",
        "away_goalie": away.goalie_situation if away else "unknown",
        "warnings": " | ".join(warnings),
    }

"""Records shared by every service: outcome types, production, quotes, forecasts.

Each collaborator adapter (stats client, odds client, injury feed) has a
single ``normalize_*`` step that produces one of these fully-populated
records.  Downstream logic never handles partial data: every field carries a
league-average or zero default so callers can set only what they have.

Design choices
--------------
* Records are plain dataclasses rather than pydantic models.  Pydantic is
  reserved for the HTTP boundary (``backend/schemas.py``); inside the engine
  the records are built in tight loops and validated by their normalisers.
* :class:`Forecast` is frozen so it can be cached and passed across threads.

Run tests with::

    pytest tests/test_prediction.py -v
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, Optional


# ---------------------------------------------------------------------------
# Outcome types
# ---------------------------------------------------------------------------


class OutcomeType(str, Enum):
    """Prop markets the engine forecasts."""

    GOALSCORER = "goalscorer"
    SHOTS = "shots"
    ASSISTS = "assists"
    POINTS = "points"
    SAVES = "saves"

    @property
    def stat(self) -> str:
        """Production counter this outcome is measured in."""
        return _OUTCOME_STAT[self]

    @property
    def is_goalie_market(self) -> bool:
        return self is OutcomeType.SAVES


_OUTCOME_STAT: Dict[OutcomeType, str] = {
    OutcomeType.GOALSCORER: "goals",
    OutcomeType.SHOTS: "shots",
    OutcomeType.ASSISTS: "assists",
    OutcomeType.POINTS: "points",
    OutcomeType.SAVES: "saves",
}

#: Positions recognised by impact scoring.  Anything else normalises to "F".
POSITIONS = frozenset({"C", "LW", "RW", "D", "G", "F"})


def normalize_position(raw: Optional[str]) -> str:
    """Map a raw position code to one of :data:`POSITIONS`.

    ``"L"``/``"R"`` (NHL API short codes) become wingers; unknown codes
    fall back to a generic forward.
    """
    code = (raw or "").strip().upper()
    if code in ("L", "LW"):
        return "LW"
    if code in ("R", "RW"):
        return "RW"
    if code in POSITIONS:
        return code
    return "F"


# ---------------------------------------------------------------------------
# Production and scope aggregates
# ---------------------------------------------------------------------------


@dataclass
class ProductionRecord:
    """Season and recent-window production for one player.

    Attributes:
        entity_id: NHL player id (string form).
        name: Display name.
        scope: Team abbreviation.
        position: One of :data:`POSITIONS`.
        games_played: Season games played.

        --- Season totals ---
        goals, assists, points, shots, pp_points: Skater counters.
        saves, shots_against, games_started: Goalie counters.
        save_pct: Goalie season save percentage (0 for skaters).

        --- Recent window ---
        recent_games: Games in the recent window (≤ window size).
        recent_goals ... recent_saves: Counters over that window.

        --- Situational time shares ---
        avg_toi_seconds: Average total time on ice per game.
        avg_pp_toi_seconds: Average power-play time on ice per game.
        recent_avg_pp_toi_seconds: Same, over the recent window.
    """

    entity_id: str
    name: str
    scope: str
    position: str = "F"
    games_played: int = 0

    goals: int = 0
    assists: int = 0
    points: int = 0
    shots: int = 0
    pp_points: int = 0

    saves: int = 0
    shots_against: int = 0
    games_started: int = 0
    save_pct: float = 0.0

    recent_games: int = 0
    recent_goals: int = 0
    recent_assists: int = 0
    recent_points: int = 0
    recent_shots: int = 0
    recent_saves: int = 0

    avg_toi_seconds: float = 0.0
    avg_pp_toi_seconds: float = 0.0
    recent_avg_pp_toi_seconds: float = 0.0

    @property
    def is_goalie(self) -> bool:
        return self.position == "G"

    @property
    def avg_pp_toi_minutes(self) -> float:
        return self.avg_pp_toi_seconds / 60.0

    def season_rate(self, stat: str) -> float:
        """Per-game season rate of ``stat`` (0.0 when no games)."""
        if self.games_played <= 0:
            return 0.0
        return getattr(self, stat) / self.games_played

    def recent_rate(self, stat: str) -> float:
        """Per-game recent-window rate of ``stat`` (0.0 when the window is empty)."""
        if self.recent_games <= 0:
            return 0.0
        return getattr(self, f"recent_{stat}") / self.recent_games


@dataclass
class ScopeAggregate:
    """Team-level aggregates used as opponent context.

    Defaults are NHL league averages so a missing team record is neutral.
    """

    scope: str
    games_played: int = 0
    goals_for_per_game: float = 3.0
    goals_against_per_game: float = 3.0
    shots_for_per_game: float = 30.0
    shots_against_per_game: float = 30.0
    save_pct: float = 0.905
    pp_pct: float = 0.20
    pk_pct: float = 0.80


# ---------------------------------------------------------------------------
# Market inputs
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class MarketQuote:
    """One sportsbook price on a player prop (over side, American odds)."""

    entity_name: str
    outcome_type: OutcomeType
    line: float
    over_price: int
    under_price: Optional[int] = None
    bookmaker: str = ""


@dataclass(frozen=True)
class SlateEntry:
    """A player scheduled to play, as handed in by the schedule collaborator."""

    entity_id: str
    name: str
    scope: str
    opponent: str
    is_home: Optional[bool]
    position: str = "F"


# ---------------------------------------------------------------------------
# Model output
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class Forecast:
    """Model output for one player and outcome type.

    ``factors`` records every multiplier applied, in application order, so a
    forecast can be audited without re-running the model.
    """

    entity_id: str
    name: str
    scope: str
    opponent: str
    outcome_type: OutcomeType
    line: float
    expected_value: float
    probability: float
    confidence: float
    games_played: int
    season_rate: float
    distribution: str = "poisson"
    factors: Dict[str, float] = field(default_factory=dict)

"""League-level configuration: all league-specific constants in one place.

This module is the **registry** for every constant that describes the league
rather than an individual player: league-average save percentage and goals
against, the recent/season blend weights, minimum sample sizes and the
market's sport key.  Nowhere else in the codebase should these be
hard-coded.

Architecture
------------
:class:`SportConfig` is a frozen dataclass.  The named constructor
:meth:`SportConfig.nhl` returns the calibrated NHL instance.  Services take a
``SportConfig`` at construction time and read from it instead of touching
module constants, which keeps tests free to inject tweaked leagues.

Typical usage::

    from backend.core.sport_config import SportConfig

    cfg = SportConfig.nhl()
    model = PropModel(config=cfg)

    # Override a single constant for a custom season calibration:
    from dataclasses import replace
    custom_cfg = replace(cfg, league_save_pct=0.902)
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Final


#: League identifier strings used in API routes and logs.
SPORT_ID_NHL: Final[str] = "nhl"


@dataclass(frozen=True)
class SportConfig:
    """Immutable configuration bundle for a single league.

    Attributes:
        sport_id: Short identifier (``"nhl"``).
        sport_name: Human-readable name for logging and display.

        --- League averages ---
        league_save_pct: League-average save percentage.  Baseline for the
            opposing-goalie quality factor and goalie importance scoring.
        league_goals_against: League-average goals against per team-game.
        league_shots_per_game: League-average shots on goal per team-game.
            Baseline for the saves opponent-volume factor.

        --- Base-rate blend ---
        recent_weight: Weight of the recent-window rate in the base rate.
        season_weight: Weight of the season rate.  Must sum to 1.0 with
            ``recent_weight``.
        recent_window_games: Number of most recent games in the recent window.

        --- Sample gates ---
        min_games: Minimum games played before any forecast is produced.

        --- Variance ---
        normal_sd_scale: Variance-to-mean scale for the normal approximation,
            ``σ = sqrt(λ) × normal_sd_scale``.  Shots and saves are slightly
            under-dispersed relative to Poisson.

        --- Probability bounds ---
        min_probability / max_probability: Every published forecast
            probability is clipped to this open-interval band.

        --- Market ---
        odds_api_sport_key: Sport key passed to The Odds API.
    """

    sport_id: str
    sport_name: str

    league_save_pct: float
    league_goals_against: float
    league_shots_per_game: float

    recent_weight: float
    season_weight: float
    recent_window_games: int

    min_games: int

    normal_sd_scale: float

    min_probability: float
    max_probability: float

    odds_api_sport_key: str

    def __post_init__(self) -> None:
        if abs(self.recent_weight + self.season_weight - 1.0) > 1e-9:
            raise ValueError(
                f"recent_weight ({self.recent_weight}) and season_weight "
                f"({self.season_weight}) must sum to 1.0."
            )
        if not (0.0 < self.min_probability < self.max_probability < 1.0):
            raise ValueError(
                "Probability bounds must satisfy 0 < min_probability < max_probability < 1."
            )

    # ------------------------------------------------------------------ #
    #  Named constructors                                                  #
    # ------------------------------------------------------------------ #

    @classmethod
    def nhl(cls) -> SportConfig:
        """Return the canonical NHL configuration.

        Sources:
            * Save pct / goals against / shots: NHL.com league totals,
              2023-24 and 2024-25 regular seasons.
            * 60/40 recent/season blend over a 5-game window: tuned on
              2023-24 anytime-goalscorer closing lines.
        """
        return cls(
            sport_id=SPORT_ID_NHL,
            sport_name="NHL",
            league_save_pct=0.905,
            league_goals_against=3.0,
            league_shots_per_game=30.0,
            recent_weight=0.6,
            season_weight=0.4,
            recent_window_games=5,
            min_games=15,
            normal_sd_scale=0.8,
            min_probability=0.01,
            max_probability=0.99,
            odds_api_sport_key="icehockey_nhl",
        )

    def __repr__(self) -> str:
        return (
            f"SportConfig(sport_id={self.sport_id!r}, "
            f"sv={self.league_save_pct}, "
            f"ga={self.league_goals_against}, "
            f"blend={self.recent_weight}/{self.season_weight})"
        )

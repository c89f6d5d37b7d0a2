"""
Tests for the NHL prop probability model.
Run with: pytest tests/test_prediction.py -v
"""

import math
from dataclasses import replace

import pytest
from scipy.stats import norm

from backend.core.records import OutcomeType, ProductionRecord, ScopeAggregate
from backend.core.sport_config import SportConfig
from backend.services.prediction import (
    MatchupContext,
    PropModel,
    normal_over,
    poisson_over,
    prob_at_least_one,
)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _skater(**overrides):
    fields = dict(
        entity_id="8478402", name="Connor McDavid", scope="EDM", position="C",
        games_played=40, goals=12, assists=30, points=42, shots=120,
        recent_games=4, recent_goals=2, recent_assists=3, recent_points=5, recent_shots=12,
    )
    fields.update(overrides)
    return ProductionRecord(**fields)


def _goalie(**overrides):
    fields = dict(
        entity_id="8479361", name="Stuart Skinner", scope="EDM", position="G",
        games_played=30, games_started=30, saves=750, shots_against=825, save_pct=0.909,
        recent_games=5, recent_saves=125,
    )
    fields.update(overrides)
    return ProductionRecord(**fields)


@pytest.fixture
def model():
    return PropModel(SportConfig.nhl())


# ---------------------------------------------------------------------------
# Distributions
# ---------------------------------------------------------------------------

class TestDistributions:

    def test_at_least_one_identity(self):
        for lam in (0.05, 0.38, 1.0, 2.5):
            assert prob_at_least_one(lam) == pytest.approx(1 - math.exp(-lam))

    def test_half_point_line_is_at_least_one(self):
        assert poisson_over(0.7, 0.5) == pytest.approx(prob_at_least_one(0.7))

    def test_one_and_half_line(self):
        # P(X >= 2) = 1 - e^-2 (1 + 2)
        assert poisson_over(2.0, 1.5) == pytest.approx(1 - 3 * math.exp(-2))

    def test_zero_rate(self):
        assert poisson_over(0.0, 0.5) == 0.0
        assert normal_over(0.0, 2.5) == 0.0

    def test_normal_approximation(self):
        sd = math.sqrt(3.0) * 0.8
        assert normal_over(3.0, 2.5) == pytest.approx(norm.sf((2.5 - 3.0) / sd))


# ---------------------------------------------------------------------------
# Base rate and factors
# ---------------------------------------------------------------------------

class TestBaseRate:

    def test_recent_weighted_sixty_percent(self, model):
        # recent .5, season .3 -> .6 * .5 + .4 * .3
        assert model.base_rate(_skater(), "goals") == pytest.approx(0.42)

    def test_season_only_without_recent_window(self, model):
        record = _skater(recent_games=0, recent_goals=0)
        assert model.base_rate(record, "goals") == pytest.approx(0.30)

    def test_season_weighted_config(self):
        model = PropModel(replace(SportConfig.nhl(), recent_weight=0.0, season_weight=1.0))
        assert model.base_rate(_skater(), "goals") == pytest.approx(0.30)


class TestNeutralScenario:
    """Neutral context: every factor is exactly 1.0"""

    def test_expected_value_and_probability(self, model):
        # recent .3, season .5 -> base .38; P(>=1) = 1 - e^-.38
        record = _skater(goals=20, recent_games=10, recent_goals=3, shots=120, recent_shots=30)
        fc = model.forecast(record, OutcomeType.GOALSCORER)
        assert fc.expected_value == pytest.approx(0.38)
        assert fc.probability == pytest.approx(0.316, abs=1e-3)
        for name in ("trend", "power_play", "counterpart", "location", "opponent", "teammates"):
            assert fc.factors[name] == pytest.approx(1.0)

    def test_factor_order_recorded(self, model):
        fc = model.forecast(_skater(), OutcomeType.GOALSCORER)
        assert list(fc.factors) == [
            "base_rate", "trend", "power_play", "counterpart", "location", "opponent", "teammates",
        ]


class TestFactors:

    def test_home_and_away(self, model):
        home = model.forecast(_skater(), OutcomeType.GOALSCORER, MatchupContext(is_home=True))
        away = model.forecast(_skater(), OutcomeType.GOALSCORER, MatchupContext(is_home=False))
        assert home.factors["location"] == pytest.approx(1.05)
        assert away.factors["location"] == pytest.approx(0.95)
        assert home.probability > away.probability

    def test_power_play_bonus(self, model):
        def pp(seconds):
            return _skater(avg_pp_toi_seconds=seconds, recent_avg_pp_toi_seconds=seconds)

        high = model.forecast(pp(270), OutcomeType.GOALSCORER)
        mid = model.forecast(pp(180), OutcomeType.GOALSCORER)
        low = model.forecast(pp(60), OutcomeType.GOALSCORER)
        assert high.factors["power_play"] == pytest.approx(1.20)
        assert mid.factors["power_play"] == pytest.approx(1.10)
        assert low.factors["power_play"] == 1.0

    def test_power_play_time_blends_recent_and_season(self, model):
        # (3.0 season + 5.0 recent) / 2 = 4.0 minutes
        record = _skater(avg_pp_toi_seconds=180, recent_avg_pp_toi_seconds=300)
        assert model.forecast(record, OutcomeType.GOALSCORER).factors["power_play"] == pytest.approx(1.20)

    def test_power_play_time_season_only_without_window(self, model):
        record = _skater(avg_pp_toi_seconds=270, recent_games=0, recent_goals=0,
                         recent_assists=0, recent_points=0, recent_shots=0)
        assert model.forecast(record, OutcomeType.GOALSCORER).factors["power_play"] == pytest.approx(1.20)

    def test_weak_opposing_goalie(self, model):
        ctx = MatchupContext(opponent=ScopeAggregate("SJS", save_pct=0.885))
        fc = model.forecast(_skater(), OutcomeType.GOALSCORER, ctx)
        assert fc.factors["counterpart"] == pytest.approx(1.06)

    def test_counterpart_bounded(self, model):
        ctx = MatchupContext(opponent=ScopeAggregate("SJS", save_pct=0.700))
        fc = model.forecast(_skater(), OutcomeType.GOALSCORER, ctx)
        assert fc.factors["counterpart"] == pytest.approx(1.25)

    def test_opponent_ratio_clamped(self, model):
        leaky = MatchupContext(opponent=ScopeAggregate("SJS", goals_against_per_game=3.6))
        stingy = MatchupContext(opponent=ScopeAggregate("LAK", goals_against_per_game=2.4))
        assert model.forecast(_skater(), OutcomeType.GOALSCORER, leaky).factors["opponent"] == pytest.approx(1.20)
        assert model.forecast(_skater(), OutcomeType.GOALSCORER, stingy).factors["opponent"] == pytest.approx(0.85)

    def test_opponent_step(self, model):
        for ga, expected in ((3.5, 1.18), (2.5, 0.85), (3.0, 1.0)):
            ctx = MatchupContext(opponent=ScopeAggregate("X", goals_against_per_game=ga))
            assert model.forecast(_skater(), OutcomeType.POINTS, ctx).factors["opponent"] == pytest.approx(expected)

    def test_hot_streak_trend_bounded(self, model):
        record = _skater(recent_shots=40)  # 10/g vs 3/g season
        fc = model.forecast(record, OutcomeType.GOALSCORER)
        assert fc.factors["trend"] == pytest.approx(0.7 + 0.3 * 1.3)

    def test_empty_recent_window_is_neutral_trend(self, model):
        fc = model.forecast(_skater(recent_shots=0), OutcomeType.GOALSCORER)
        assert fc.factors["trend"] == 1.0

    def test_teammate_multiplier_scales_rate(self, model):
        base = model.forecast(_skater(), OutcomeType.POINTS)
        hurt = model.forecast(_skater(), OutcomeType.POINTS, MatchupContext(teammate_multiplier=0.85))
        assert hurt.expected_value == pytest.approx(base.expected_value * 0.85)


# ---------------------------------------------------------------------------
# Confidence, eligibility, bounds
# ---------------------------------------------------------------------------

class TestConfidence:

    def test_large_sample_productive_player(self, model):
        assert model.confidence(40, 0.5, 0.15) == pytest.approx(0.80)

    def test_small_sample(self, model):
        assert model.confidence(10, 0.1, 0.15) == pytest.approx(0.50)

    def test_ceiling(self, model):
        assert model.confidence(82, 100.0, 0.15) <= 0.95


class TestEligibility:

    def test_small_sample_skipped(self, model):
        assert model.forecast(_skater(games_played=10), OutcomeType.GOALSCORER) is None

    def test_low_producer_skipped(self, model):
        assert model.forecast(_skater(goals=2), OutcomeType.GOALSCORER) is None

    def test_goalie_not_forecast_for_skater_props(self, model):
        assert model.forecast(_goalie(), OutcomeType.SHOTS) is None

    def test_skater_not_forecast_for_saves(self, model):
        assert model.forecast(_skater(), OutcomeType.SAVES) is None


class TestBounds:

    def test_probability_clipped_high(self, model):
        record = _skater(goals=200, recent_goals=20)
        fc = model.forecast(record, OutcomeType.GOALSCORER)
        assert fc.probability == pytest.approx(0.99)

    def test_probability_clipped_low(self, model):
        fc = model.forecast(_skater(), OutcomeType.GOALSCORER, line=9.5)
        assert fc.probability == pytest.approx(0.01)

    def test_all_types_in_open_interval(self, model):
        for outcome in (OutcomeType.GOALSCORER, OutcomeType.SHOTS, OutcomeType.ASSISTS, OutcomeType.POINTS):
            fc = model.forecast(_skater(), outcome)
            assert 0.0 < fc.probability < 1.0
            assert fc.expected_value >= 0.0
            assert 0.0 < fc.confidence < 1.0


class TestSaves:

    def test_normal_approximation_used(self, model):
        fc = model.forecast(_goalie(), OutcomeType.SAVES)
        assert fc.distribution == "normal"
        assert fc.line == 24.5
        assert fc.expected_value == pytest.approx(25.0)
        assert fc.probability == pytest.approx(norm.sf((24.5 - 25.0) / (5.0 * 0.8)))

    def test_shot_heavy_opponent(self, model):
        ctx = MatchupContext(opponent=ScopeAggregate("CAR", shots_for_per_game=33.0))
        fc = model.forecast(_goalie(), OutcomeType.SAVES, ctx)
        assert fc.factors["opponent"] == pytest.approx(1.1)


class TestReprice:

    def test_same_line_unchanged(self, model):
        fc = model.forecast(_skater(), OutcomeType.SHOTS)
        assert model.reprice(fc, fc.line) is fc

    def test_higher_line_lower_probability(self, model):
        fc = model.forecast(_skater(), OutcomeType.SHOTS)
        higher = model.reprice(fc, 3.5)
        assert higher.line == 3.5
        assert higher.expected_value == fc.expected_value
        assert higher.probability < fc.probability


if __name__ == "__main__":
    pytest.main([__file__, "-v"])

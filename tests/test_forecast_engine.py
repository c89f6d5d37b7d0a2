"""
Tests for the forecast engine facade with fake collaborators.
Run with: pytest tests/test_forecast_engine.py -v
"""

import threading
import time

import pytest
from unittest.mock import MagicMock

from backend.core.cache import TTLCache
from backend.core.records import (
    MarketQuote,
    OutcomeType,
    ProductionRecord,
    ScopeAggregate,
    SlateEntry,
)
from backend.services.classification import BetTier
from backend.services.forecast import ForecastEngine
from backend.services.prediction import PropModel
from backend.services.reconciliation import (
    AvailabilityStatus,
    StatusRecord,
    UncertainPolicy,
    Verdict,
)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

MATTHEWS = SlateEntry("8479318", "Auston Matthews", "TOR", "BOS", True, "C")
NYLANDER = SlateEntry("8477939", "William Nylander", "TOR", "BOS", True, "RW")
WOLL = SlateEntry("8479361", "Joseph Woll", "TOR", "BOS", True, "G")
AHO_CAR = SlateEntry("8478427", "Sebastian Aho", "CAR", "NYI", False, "C")
AHO_NYI = SlateEntry("8480222", "Sebastian Aho", "NYI", "CAR", True, "D")


def _production(entry, goals, points, shots=120):
    return ProductionRecord(
        entity_id=entry.entity_id, name=entry.name, scope=entry.scope, position=entry.position,
        games_played=40, goals=goals, assists=points - goals, points=points, shots=shots,
        recent_games=5, recent_goals=goals // 8, recent_assists=(points - goals) // 8,
        recent_points=points // 8, recent_shots=shots // 8,
    )


PRODUCTION = {
    MATTHEWS.entity_id: _production(MATTHEWS, 24, 48, shots=160),
    NYLANDER.entity_id: _production(NYLANDER, 16, 40),
    AHO_CAR.entity_id: _production(AHO_CAR, 20, 44),
    AHO_NYI.entity_id: _production(AHO_NYI, 4, 20, shots=70),
    WOLL.entity_id: ProductionRecord(
        entity_id=WOLL.entity_id, name=WOLL.name, scope="TOR", position="G",
        games_played=30, saves=780, shots_against=850, recent_games=5, recent_saves=130,
    ),
}


def _roster_player(pid, name, position, points, toi):
    return ProductionRecord(
        entity_id=pid, name=name, scope="TOR", position=position,
        games_played=40, points=points, avg_toi_seconds=toi,
    )


TOR_ROSTER = [
    _roster_player("8479318", "Auston Matthews", "C", 50, 1250),
    _roster_player("8477939", "William Nylander", "RW", 40, 1200),
    _roster_player("8478483", "Mitch Marner", "RW", 45, 1230),
    _roster_player("8476853", "Morgan Rielly", "D", 30, 1400),
    _roster_player("8475166", "John Tavares", "C", 35, 1100),
    _roster_player("8477503", "Max Domi", "C", 20, 900),
]


def _engine(statuses=(), quotes=None, policy=UncertainPolicy.CONSERVATIVE, with_odds=True):
    injuries = MagicMock()
    injuries.fetch_statuses.return_value = list(statuses)
    injuries.refresh.return_value = list(statuses)

    odds_client = None
    if with_odds:
        odds_client = MagicMock()
        odds_client.fetch_prop_quotes.return_value = quotes

    stats = MagicMock()
    stats.production_records.side_effect = lambda entries: {
        e.entity_id: PRODUCTION[e.entity_id] for e in entries
    }
    stats.scope_aggregates.side_effect = lambda scopes: {s: ScopeAggregate(s) for s in scopes}
    stats.team_roster.side_effect = lambda scope: TOR_ROSTER if scope == "TOR" else []

    engine = ForecastEngine(
        cache=TTLCache(),
        injury_service=injuries,
        odds_client=odds_client,
        stats_client=stats,
        model=PropModel(),
        policy=policy,
    )
    return engine, stats


def _out(name, scope="TOR"):
    return StatusRecord(name=name, scope=scope, status=AvailabilityStatus.OUT, position="C")


# ---------------------------------------------------------------------------
# Availability cycle
# ---------------------------------------------------------------------------

class TestRefreshAvailability:

    def test_agreed_unavailable(self):
        engine, stats = _engine([_out("Auston Matthews")], quotes=[])
        summary = engine.refresh_availability()

        assert summary["agreed_unavailable"] == 1
        v = engine.verdict_for("Auston Matthews", "TOR")
        assert v.verdict is Verdict.UNAVAILABLE
        assert v.agreement == 2
        assert "TOR" in engine.impacts
        stats.team_roster.assert_called_once_with("TOR")

    def test_no_odds_client_means_market_unknown(self):
        engine, _ = _engine([_out("Auston Matthews")], with_odds=False)
        engine.refresh_availability()
        v = engine.verdict_for("Auston Matthews", "TOR")
        assert v.verdict is Verdict.UNAVAILABLE
        assert v.agreement == 1
        assert v.sources_consulted == 1

    def test_market_fetched_once_per_ttl(self):
        engine, _ = _engine([], quotes=[])
        engine.refresh_availability()
        engine.refresh_availability()
        assert engine.odds_client.fetch_prop_quotes.call_count == 1

    def test_healthy_league_has_no_impacts(self):
        engine, stats = _engine([], quotes=[])
        engine.refresh_availability()
        assert engine.impacts == {}
        stats.team_roster.assert_not_called()

    def test_forced_refresh_refetches_feed(self):
        engine, _ = _engine([_out("Auston Matthews")], quotes=[])
        engine.refresh_availability(force=True)
        engine.injuries.refresh.assert_called_once()
        engine.injuries.fetch_statuses.assert_not_called()

    def test_last_refresh_is_utc(self):
        engine, _ = _engine([], quotes=[])
        engine.refresh_availability()
        assert engine.last_refresh.utcoffset().total_seconds() == 0

    def test_cycle_purges_long_expired_cache_entries(self):
        engine, _ = _engine([], quotes=[])
        engine.cache = MagicMock(wraps=engine.cache)
        engine.refresh_availability()
        engine.cache.purge_expired.assert_called_once()

    def test_concurrent_first_forecasts_share_one_cycle(self):
        engine, _ = _engine([], quotes=[])

        def slow_feed():
            time.sleep(0.05)
            return []

        engine.injuries.fetch_statuses.side_effect = slow_feed
        threads = [threading.Thread(target=engine.forecast_points, args=([NYLANDER],)) for _ in range(6)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert engine.injuries.fetch_statuses.call_count == 1


# ---------------------------------------------------------------------------
# Forecasts
# ---------------------------------------------------------------------------

class TestForecast:

    def test_first_forecast_triggers_refresh(self):
        engine, _ = _engine([], quotes=[])
        assert engine.last_refresh is None
        engine.forecast_points([NYLANDER])
        assert engine.last_refresh is not None

    def test_unavailable_player_skipped_before_fetch(self):
        engine, stats = _engine([_out("Auston Matthews")], quotes=[])
        forecasts = engine.forecast_goalscorers([MATTHEWS, NYLANDER])

        assert [f.name for f in forecasts] == ["William Nylander"]
        fetched = stats.production_records.call_args.args[0]
        assert [e.name for e in fetched] == ["William Nylander"]

    def test_namesake_on_another_team_still_forecast(self):
        engine, _ = _engine([_out("Sebastian Aho", scope="NYI")], quotes=[])
        forecasts = engine.forecast_points([AHO_NYI, AHO_CAR])

        assert [(f.name, f.scope) for f in forecasts] == [("Sebastian Aho", "CAR")]
        assert engine.verdict_for("Sebastian Aho", "NYI").verdict is Verdict.UNAVAILABLE
        assert engine.verdict_for("Sebastian Aho", "CAR") is None

    def test_uncertain_conservative_skips(self):
        quotes = [MarketQuote("Auston Matthews", OutcomeType.POINTS, 0.5, -200)]
        engine, _ = _engine([_out("Auston Matthews")], quotes=quotes)
        assert engine.forecast_points([MATTHEWS]) == []
        assert engine.verdict_for("Auston Matthews", "TOR").verdict is Verdict.UNCERTAIN

    def test_uncertain_permissive_forecasts(self):
        quotes = [MarketQuote("Auston Matthews", OutcomeType.POINTS, 0.5, -200)]
        engine, _ = _engine([_out("Auston Matthews")], quotes=quotes, policy=UncertainPolicy.PERMISSIVE)
        assert [f.name for f in engine.forecast_points([MATTHEWS])] == ["Auston Matthews"]

    def test_teammate_multiplier_applied(self):
        engine, _ = _engine([_out("Auston Matthews")], quotes=[])
        fc = engine.forecast_points([NYLANDER])[0]
        # tier-2 center out: linemate drop .75, line promotion .85
        assert fc.factors["teammates"] == pytest.approx(0.75 * 0.85)

    def test_healthy_team_neutral_teammates(self):
        engine, _ = _engine([], quotes=[])
        fc = engine.forecast_points([NYLANDER])[0]
        assert fc.factors["teammates"] == 1.0
        assert fc.opponent == "BOS"

    def test_sorted_by_probability(self):
        engine, _ = _engine([], quotes=[])
        forecasts = engine.forecast_shots([NYLANDER, MATTHEWS])
        assert forecasts[0].name == "Auston Matthews"
        assert forecasts[0].probability >= forecasts[1].probability

    def test_bad_record_skipped(self):
        engine, _ = _engine([], quotes=[])
        engine.model = MagicMock()
        engine.model.forecast.side_effect = [ValueError("bad record"), None]
        assert engine.forecast_points([MATTHEWS, NYLANDER]) == []

    def test_string_outcome_type_accepted(self):
        engine, _ = _engine([], quotes=[])
        assert engine.forecast("assists", [NYLANDER])[0].outcome_type is OutcomeType.ASSISTS

    def test_goalies_excluded_from_skater_props(self):
        engine, _ = _engine([], quotes=[])
        assert engine.forecast_shots([WOLL]) == []
        saves = engine.forecast_saves([WOLL])
        assert saves[0].distribution == "normal"


# ---------------------------------------------------------------------------
# Bets and audit
# ---------------------------------------------------------------------------

class TestEvaluateBet:

    def test_reprices_at_quote_line(self):
        engine, _ = _engine([], quotes=[])
        fc = engine.forecast_shots([NYLANDER])[0]
        quote = MarketQuote("William Nylander", OutcomeType.SHOTS, 3.5, 150)

        verdict = engine.evaluate_bet(fc, quote)

        assert verdict.forecast.line == 3.5
        assert verdict.forecast.probability < fc.probability

    def test_outcome_mismatch_rejected(self):
        engine, _ = _engine([], quotes=[])
        fc = engine.forecast_shots([NYLANDER])[0]
        with pytest.raises(ValueError):
            engine.evaluate_bet(fc, MarketQuote("William Nylander", OutcomeType.POINTS, 0.5, 100))

    def test_no_quote_caps_at_lean(self):
        engine, _ = _engine([], quotes=[])
        fc = engine.forecast_points([MATTHEWS])[0]
        assert engine.evaluate_bet(fc).tier <= BetTier.LEAN

    def test_evaluate_slate_uses_best_quote(self):
        quotes = [
            MarketQuote("William Nylander", OutcomeType.POINTS, 0.5, 120, bookmaker="draftkings"),
            MarketQuote("William Nylander", OutcomeType.POINTS, 0.5, 135, bookmaker="fanduel"),
        ]
        engine, _ = _engine([], quotes=quotes)
        verdicts = engine.evaluate_slate(OutcomeType.POINTS, [NYLANDER])
        assert verdicts[0].quote.bookmaker == "fanduel"


class TestGameStatus:

    def test_adjustments_for_both_sides(self):
        engine, _ = _engine([_out("Auston Matthews")], quotes=[])
        game = engine.game_status("TOR", "BOS")

        assert game["home"] == "TOR"
        assert game["away"] == "BOS"
        assert game["home_win_prob"] < 0
        assert game["away_win_prob"] == 0.0
        assert "1 out" in game["home_summary"]
        assert game["away_summary"] == "Healthy"

    def test_back_to_back_compounds_losses(self):
        engine, _ = _engine([_out("Auston Matthews")], quotes=[])
        rested = engine.game_status("TOR", "BOS")["home_win_prob"]
        tired = engine.game_status("TOR", "BOS", home_back_to_back=True)["home_win_prob"]
        assert tired < rested


class TestScopeStatus:

    def test_status_payload(self):
        engine, _ = _engine([_out("Auston Matthews")], quotes=[])
        engine.refresh_availability()
        engine.cache.lockout("odds_api", seconds=120)

        status = engine.scope_status("TOR")

        assert status["policy"] == "conservative"
        assert status["verdicts"][0]["name"] == "Auston Matthews"
        assert status["verdicts"][0]["treated_unavailable"]
        assert status["impact"]["unavailable"] == 1
        assert "1 out" in status["summary"]
        assert status["validation"]["agreed_unavailable"] == 1
        assert status["odds_lockout_seconds"] == 120
        assert status["last_refresh"] is not None

    def test_unknown_scope_is_healthy(self):
        engine, _ = _engine([], quotes=[])
        status = engine.scope_status("SEA")
        assert status["verdicts"] == []
        assert status["impact"] == {}
        assert status["summary"] == "Healthy"


if __name__ == "__main__":
    pytest.main([__file__, "-v"])

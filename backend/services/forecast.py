"""
Forecast & validation engine facade.

Wires the collaborators together behind one object:

    InjuryService + OddsAPIClient  ->  reconcile()            (verdicts)
    verdicts + NHLStatsClient      ->  quantify_scope_impact() (per team)
    slate + records + impacts      ->  PropModel.forecast()   (forecasts)
    forecast + MarketQuote         ->  classify_bet()         (verdicts)

``refresh_availability`` runs one reconciliation cycle and is what the
scheduler calls.  Forecast calls read the last cycle's results; the first
call triggers a cycle if none has run yet, and concurrent first calls share
that one cycle.  Verdicts are keyed by ``(scope, normalized name)`` so two
players with the same name on different teams never shadow each other.  A
single bad player record is logged and skipped, never allowed to fail a
whole slate.
"""

import logging
import os
import threading
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime, timezone
from typing import Dict, Iterable, List, Optional, Tuple

from dotenv import load_dotenv

from backend.core.cache import TTLCache
from backend.core.records import Forecast, MarketQuote, OutcomeType, SlateEntry
from backend.core.sport_config import SportConfig
from backend.services import odds
from backend.services.classification import BetVerdict, classify_bet, sort_bets_by_quality
from backend.services.impact import (
    ScopeImpact,
    game_adjustments,
    quantify_scope_impact,
    teammate_multiplier,
)
from backend.services.injuries import InjuryService
from backend.services.names import normalize_player_name
from backend.services.odds import OddsAPIClient, best_quote, players_with_props
from backend.services.prediction import MatchupContext, PropModel
from backend.services.reconciliation import (
    ConsensusVerdict,
    UncertainPolicy,
    is_unavailable,
    reconcile,
    summarize_verdicts,
    unavailable_by_scope,
)
from backend.services.stats import FETCH_BATCH_SIZE, NHLStatsClient

load_dotenv()

logger = logging.getLogger(__name__)


def _policy_from_env() -> UncertainPolicy:
    raw = os.getenv("UNCERTAIN_POLICY", UncertainPolicy.CONSERVATIVE.value).strip().lower()
    try:
        return UncertainPolicy(raw)
    except ValueError:
        logger.warning("Unknown UNCERTAIN_POLICY %r; using conservative", raw)
        return UncertainPolicy.CONSERVATIVE


UNCERTAIN_POLICY = _policy_from_env()
PROPS_CACHE_KEY = ("props", "nhl", None)


class ForecastEngine:
    """Single entry point for availability, forecasts and bet evaluation."""

    def __init__(
        self,
        cache: Optional[TTLCache] = None,
        injury_service: Optional[InjuryService] = None,
        odds_client: Optional[OddsAPIClient] = None,
        stats_client: Optional[NHLStatsClient] = None,
        model: Optional[PropModel] = None,
        policy: Optional[UncertainPolicy] = None,
        config: Optional[SportConfig] = None,
    ):
        self.cache = cache or TTLCache()
        self.config = config or SportConfig.nhl()
        self.injuries = injury_service or InjuryService(self.cache)
        self.odds_client = odds_client
        self.stats = stats_client or NHLStatsClient(self.cache, self.config)
        self.model = model or PropModel(self.config)
        self.policy = policy or UNCERTAIN_POLICY

        self._lock = threading.Lock()
        self._refresh_lock = threading.Lock()
        self.verdicts: Dict[Tuple[str, str], ConsensusVerdict] = {}
        self.impacts: Dict[str, ScopeImpact] = {}
        self.validation: Dict[str, int] = {}
        self.last_refresh: Optional[datetime] = None

    # ------------------------------------------------------------------
    # Availability cycle
    # ------------------------------------------------------------------

    def market_quotes(self) -> Optional[List[MarketQuote]]:
        """Cached prop quotes, or None when the market is unknown this cycle."""
        if self.odds_client is None:
            return None
        return self.cache.get_or_refresh(
            PROPS_CACHE_KEY,
            odds.PROPS_CACHE_TTL,
            self.odds_client.fetch_prop_quotes,
            source=odds.SOURCE,
            default=None,
        )

    def refresh_availability(self, force: bool = False) -> Dict[str, int]:
        """Run one reconciliation + impact cycle.  Returns the validation summary.

        Args:
            force: Drop the cached injury feed first (scheduler and admin
                refreshes).  Otherwise a fresh cached feed is reused.
        """
        with self._refresh_lock:
            return self._run_cycle(force)

    def _run_cycle(self, force: bool = False) -> Dict[str, int]:
        self.cache.purge_expired()
        statuses = self.injuries.refresh() if force else self.injuries.fetch_statuses()
        market = players_with_props(self.market_quotes())
        verdicts = reconcile(statuses, market)
        grouped = unavailable_by_scope(verdicts.values(), self.policy)

        scopes = sorted(grouped)
        with ThreadPoolExecutor(max_workers=FETCH_BATCH_SIZE) as pool:
            rosters = dict(zip(scopes, pool.map(self.stats.team_roster, scopes)))

        impacts = {
            scope: quantify_scope_impact(scope, rosters.get(scope) or [], grouped[scope], self.config)
            for scope in scopes
        }
        summary = summarize_verdicts(verdicts.values(), len(statuses), market)

        with self._lock:
            self.verdicts = verdicts
            self.impacts = impacts
            self.validation = summary
            self.last_refresh = datetime.now(timezone.utc)

        logger.info(
            "Availability cycle: %d listed, %s with props, %d unavailable, %d available, "
            "%d uncertain (%s policy), %d teams impacted",
            summary["status_count"],
            summary["market_count"] if market is not None else "unknown",
            summary["agreed_unavailable"],
            summary["agreed_available"],
            summary["uncertain"],
            self.policy.value,
            len(impacts),
        )
        return summary

    def _ensure_availability(self) -> None:
        if self.last_refresh is not None:
            return
        with self._refresh_lock:
            if self.last_refresh is None:
                self._run_cycle()

    def verdict_for(self, name: str, scope: str) -> Optional[ConsensusVerdict]:
        return self.verdicts.get((scope, normalize_player_name(name)))

    def is_player_unavailable(self, name: str, scope: str) -> bool:
        verdict = self.verdict_for(name, scope)
        return verdict is not None and is_unavailable(verdict, self.policy)

    # ------------------------------------------------------------------
    # Forecasts
    # ------------------------------------------------------------------

    def forecast(self, outcome_type, slate: Iterable[SlateEntry]) -> List[Forecast]:
        """Forecast every eligible, available player on the slate.

        Unavailable players are dropped before any stats are fetched.
        Results are sorted by probability, highest first.
        """
        outcome_type = OutcomeType(outcome_type)
        self._ensure_availability()

        eligible = []
        for entry in slate:
            if self.is_player_unavailable(entry.name, entry.scope):
                logger.info("Skipping %s (%s): unavailable", entry.name, entry.scope)
                continue
            eligible.append(entry)
        if not eligible:
            return []

        records = self.stats.production_records(eligible)
        aggregates = self.stats.scope_aggregates(e.opponent for e in eligible if e.opponent)

        forecasts = []
        for entry in eligible:
            record = records.get(entry.entity_id)
            if record is None:
                continue
            context = MatchupContext(
                is_home=entry.is_home,
                opponent=aggregates.get(entry.opponent),
                opponent_scope=entry.opponent,
                teammate_multiplier=teammate_multiplier(self.impacts.get(entry.scope), entry.entity_id),
            )
            try:
                result = self.model.forecast(record, outcome_type, context)
            except (ValueError, ZeroDivisionError) as exc:
                logger.warning("Forecast failed for %s (%s): %s", entry.name, outcome_type.value, exc)
                continue
            if result is not None:
                forecasts.append(result)

        forecasts.sort(key=lambda f: f.probability, reverse=True)
        logger.info(
            "%s forecasts: %d of %d slate players", outcome_type.value, len(forecasts), len(eligible)
        )
        return forecasts

    def forecast_goalscorers(self, slate: Iterable[SlateEntry]) -> List[Forecast]:
        return self.forecast(OutcomeType.GOALSCORER, slate)

    def forecast_shots(self, slate: Iterable[SlateEntry]) -> List[Forecast]:
        return self.forecast(OutcomeType.SHOTS, slate)

    def forecast_assists(self, slate: Iterable[SlateEntry]) -> List[Forecast]:
        return self.forecast(OutcomeType.ASSISTS, slate)

    def forecast_points(self, slate: Iterable[SlateEntry]) -> List[Forecast]:
        return self.forecast(OutcomeType.POINTS, slate)

    def forecast_saves(self, slate: Iterable[SlateEntry]) -> List[Forecast]:
        return self.forecast(OutcomeType.SAVES, slate)

    # ------------------------------------------------------------------
    # Bets
    # ------------------------------------------------------------------

    def evaluate_bet(self, forecast: Forecast, quote: Optional[MarketQuote] = None) -> BetVerdict:
        """Classify a forecast against a quote, repricing at the quote's line."""
        if quote is not None:
            if quote.outcome_type is not forecast.outcome_type:
                raise ValueError(
                    f"Quote is for {quote.outcome_type.value}, forecast is for {forecast.outcome_type.value}"
                )
            forecast = self.model.reprice(forecast, quote.line)
        return classify_bet(forecast, quote)

    def evaluate_slate(self, outcome_type, slate: Iterable[SlateEntry]) -> List[BetVerdict]:
        """Forecast a slate and classify each forecast against its best quote."""
        quotes = self.market_quotes() or []
        verdicts = []
        for fc in self.forecast(outcome_type, slate):
            quote = best_quote(quotes, fc.name, fc.outcome_type)
            verdicts.append(self.evaluate_bet(fc, quote))
        return sort_bets_by_quality(verdicts)

    # ------------------------------------------------------------------
    # Games
    # ------------------------------------------------------------------

    def game_status(
        self,
        home: str,
        away: str,
        *,
        home_back_to_back: bool = False,
        away_back_to_back: bool = False,
    ) -> dict:
        """Game-level win probability, special teams and total adjustments."""
        self._ensure_availability()
        with self._lock:
            home_impact = self.impacts.get(home)
            away_impact = self.impacts.get(away)
        return {
            "home": home,
            "away": away,
            **game_adjustments(
                home_impact,
                away_impact,
                home_back_to_back=home_back_to_back,
                away_back_to_back=away_back_to_back,
            ),
        }

    # ------------------------------------------------------------------
    # Audit
    # ------------------------------------------------------------------

    def scope_status(self, scope: str) -> dict:
        """Verdicts, impact and cache health for one team."""
        with self._lock:
            verdicts = [v for v in self.verdicts.values() if v.scope == scope]
            impact = self.impacts.get(scope)
            validation = dict(self.validation)
            last_refresh = self.last_refresh

        impact_detail = {}
        if impact is not None:
            impact_detail = {
                **impact.breakdown(),
                "win_prob": round(impact.win_prob, 4),
                "power_play": round(impact.power_play, 4),
                "penalty_kill": round(impact.penalty_kill, 4),
                "goals_for": round(impact.goals_for, 3),
                "goals_against": round(impact.goals_against, 3),
                "goalie_situation": impact.goalie_situation,
                "concentration_level": impact.concentration.level if impact.concentration else "low",
                "stars_out": list(impact.stars_out),
            }

        return {
            "scope": scope,
            "policy": self.policy.value,
            "verdicts": [
                {
                    "name": v.name,
                    "verdict": v.verdict.value,
                    "authoritative": v.authoritative.value,
                    "market": v.market.value,
                    "agreement": v.agreement,
                    "sources_consulted": v.sources_consulted,
                    "treated_unavailable": is_unavailable(v, self.policy),
                    "rationale": v.rationale,
                }
                for v in verdicts
            ],
            "impact": impact_detail,
            "summary": impact.summary() if impact is not None else "Healthy",
            "validation": validation,
            "cache": self.cache.status(),
            "odds_lockout_seconds": self.cache.lockout_remaining(odds.SOURCE),
            "last_refresh": last_refresh.isoformat() if last_refresh else None,
        }


# ---------------------------------------------------------------------------
# Singleton
# ---------------------------------------------------------------------------

_engine: Optional[ForecastEngine] = None


def get_forecast_engine() -> ForecastEngine:
    """Process-wide engine.  The odds client is optional (no key -> market unknown)."""
    global _engine
    if _engine is None:
        cache = TTLCache()
        try:
            odds_client = OddsAPIClient(cache=cache)
        except ValueError as exc:
            logger.warning("Odds API disabled: %s", exc)
            odds_client = None
        _engine = ForecastEngine(cache=cache, odds_client=odds_client)
    return _engine

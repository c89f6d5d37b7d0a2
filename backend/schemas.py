"""
Pydantic request/response schemas for the NHL prop engine API.

Request models validate at the boundary and convert into the internal
dataclasses (``SlateEntry``, ``MarketQuote``, ``Forecast``); nothing past
the route handlers sees raw JSON.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field, field_validator

from backend.core.records import Forecast, MarketQuote, OutcomeType, SlateEntry, normalize_position
from backend.services.classification import BetVerdict, stake_dollars, stake_units
from backend.services.reconciliation import AvailabilityStatus, StatusRecord


def _check_american(v: int) -> int:
    if -100 < v < 100:
        raise ValueError(f"{v} is not valid American odds. Must be >= +100 or <= -100.")
    return v


# ---------------------------------------------------------------------------
# Requests
# ---------------------------------------------------------------------------

class SlateEntryIn(BaseModel):
    """One scheduled player."""

    entity_id: str = Field(..., min_length=1, description="NHL player id")
    name: str = Field(..., min_length=2, max_length=80)
    scope: str = Field(..., min_length=2, max_length=4, description='Team abbreviation, e.g. "TOR"')
    opponent: str = Field("", max_length=4)
    is_home: Optional[bool] = Field(None, description="None = location unknown (neutral)")
    position: str = Field("F", description="C, LW, RW, D, G or F")

    @field_validator("scope", "opponent")
    @classmethod
    def upper_abbrev(cls, v: str) -> str:
        return v.strip().upper()

    @field_validator("position")
    @classmethod
    def known_position(cls, v: str) -> str:
        return normalize_position(v)

    def to_entry(self) -> SlateEntry:
        return SlateEntry(
            entity_id=self.entity_id,
            name=self.name,
            scope=self.scope,
            opponent=self.opponent,
            is_home=self.is_home,
            position=self.position,
        )


class SlateIn(BaseModel):
    entries: List[SlateEntryIn] = Field(..., min_length=1, max_length=400)

    def to_slate(self) -> List[SlateEntry]:
        return [e.to_entry() for e in self.entries]


class QuoteIn(BaseModel):
    entity_name: str = Field(..., min_length=2)
    outcome_type: OutcomeType
    line: float = Field(..., ge=0)
    over_price: int
    under_price: Optional[int] = None
    bookmaker: str = ""

    @field_validator("over_price")
    @classmethod
    def validate_over(cls, v: int) -> int:
        return _check_american(v)

    @field_validator("under_price")
    @classmethod
    def validate_under(cls, v: Optional[int]) -> Optional[int]:
        return None if v is None else _check_american(v)

    def to_quote(self) -> MarketQuote:
        return MarketQuote(
            entity_name=self.entity_name,
            outcome_type=self.outcome_type,
            line=self.line,
            over_price=self.over_price,
            under_price=self.under_price,
            bookmaker=self.bookmaker,
        )


class StatusOverrideIn(BaseModel):
    """Manual availability override (takes priority over the ESPN feed)."""

    name: str = Field(..., min_length=2, max_length=80)
    scope: str = Field(..., min_length=2, max_length=4)
    status: AvailabilityStatus
    position: str = "F"
    detail: str = Field("", max_length=200)
    games_missed: int = Field(5, ge=0, le=82)

    @field_validator("scope")
    @classmethod
    def upper_scope(cls, v: str) -> str:
        return v.strip().upper()

    def to_record(self) -> StatusRecord:
        return StatusRecord(
            name=self.name,
            scope=self.scope,
            status=self.status,
            position=normalize_position(self.position),
            raw_status=self.status.value,
            detail=self.detail,
            games_missed=self.games_missed,
            source="manual",
            observed_at=datetime.now(timezone.utc),
        )


class EvaluateBetIn(BaseModel):
    """Forecast one slate entry and classify it against an optional quote."""

    entry: SlateEntryIn
    outcome_type: OutcomeType
    quote: Optional[QuoteIn] = None


# ---------------------------------------------------------------------------
# Responses
# ---------------------------------------------------------------------------

class ForecastOut(BaseModel):
    entity_id: str
    name: str
    scope: str
    opponent: str
    outcome_type: OutcomeType
    line: float
    expected_value: float
    probability: float = Field(..., gt=0.0, lt=1.0)
    confidence: float
    games_played: int
    season_rate: float
    distribution: str
    factors: Dict[str, float]

    @classmethod
    def from_forecast(cls, fc: Forecast) -> "ForecastOut":
        return cls(
            entity_id=fc.entity_id,
            name=fc.name,
            scope=fc.scope,
            opponent=fc.opponent,
            outcome_type=fc.outcome_type,
            line=fc.line,
            expected_value=round(fc.expected_value, 4),
            probability=round(fc.probability, 4),
            confidence=round(fc.confidence, 3),
            games_played=fc.games_played,
            season_rate=round(fc.season_rate, 4),
            distribution=fc.distribution,
            factors={k: round(v, 4) for k, v in fc.factors.items()},
        )


class BetVerdictOut(BaseModel):
    forecast: ForecastOut
    tier: str
    stake_fraction: float
    stake_units: float
    stake_dollars: Optional[float] = Field(None, description="Only when a bankroll is given")
    implied_probability: float
    market_probability: float = Field(..., description="No-vig when both sides are quoted")
    edge: float
    expected_value: float = Field(..., description="EV per $100 staked")
    fair_odds: int
    needs_review: bool
    bookmaker: Optional[str] = None
    over_price: Optional[int] = None
    rationale: List[str]

    @classmethod
    def from_verdict(cls, v: BetVerdict, bankroll: Optional[float] = None) -> "BetVerdictOut":
        return cls(
            forecast=ForecastOut.from_forecast(v.forecast),
            tier=v.tier.label,
            stake_fraction=v.stake_fraction,
            stake_units=stake_units(v),
            stake_dollars=stake_dollars(v, bankroll) if bankroll is not None else None,
            implied_probability=round(v.implied_probability, 4),
            market_probability=round(v.market_probability, 4),
            edge=round(v.edge, 4),
            expected_value=v.expected_value,
            fair_odds=v.fair_odds,
            needs_review=v.needs_review,
            bookmaker=v.quote.bookmaker if v.quote else None,
            over_price=v.quote.over_price if v.quote else None,
            rationale=list(v.rationale),
        )


class ForecastsResponse(BaseModel):
    outcome_type: OutcomeType
    count: int
    forecasts: List[ForecastOut]


class SlateBetsResponse(BaseModel):
    outcome_type: OutcomeType
    summary: Dict[str, float]
    verdicts: List[BetVerdictOut]


class GameStatusOut(BaseModel):
    home: str
    away: str
    home_win_prob: float
    away_win_prob: float
    home_power_play: float
    away_power_play: float
    home_penalty_kill: float
    away_penalty_kill: float
    expected_total_delta: float
    home_summary: str
    away_summary: str
    home_stars_out: List[str]
    away_stars_out: List[str]
    home_goalie: str
    away_goalie: str
    warnings: str


class VerdictOut(BaseModel):
    name: str
    verdict: str
    authoritative: str
    market: str
    agreement: int
    sources_consulted: int
    treated_unavailable: bool
    rationale: str


class ScopeStatusOut(BaseModel):
    scope: str
    policy: str
    verdicts: List[VerdictOut]
    impact: Dict[str, Any]
    summary: str
    validation: Dict[str, int]
    cache: Dict[str, Any]
    odds_lockout_seconds: int
    last_refresh: Optional[str] = None


class RefreshResponse(BaseModel):
    message: str
    status_count: int
    market_count: int
    agreed_unavailable: int
    agreed_available: int
    uncertain: int

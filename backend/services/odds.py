"""
The Odds API integration for NHL player props.
https://the-odds-api.com/

Player props are priced per event, so every event costs credits.  The free
tier is 500 requests a month; this client is deliberately stingy:

  * at most ``PROPS_MAX_EVENTS`` events are fetched per refresh,
  * HTTP 401/429, or fewer than ``MIN_CREDITS`` left before the per-event
    fetches, raises ``QuotaExhaustedError`` so the cache locks the source
    out instead of spending the last credits on the next refresh.

Two things come out of a refresh: ``MarketQuote`` prices for the classifier,
and the set of players with any prop listed (market presence) for the
availability reconciliation.
"""

import logging
import os
from datetime import datetime, timedelta, timezone
from typing import Dict, List, Optional, Set, Tuple

import requests
from dotenv import load_dotenv

from backend.core.cache import QuotaExhaustedError, TTLCache
from backend.core.records import MarketQuote, OutcomeType
from backend.services.names import normalize_player_name

load_dotenv()

logger = logging.getLogger(__name__)

API_KEY = os.getenv("THE_ODDS_API_KEY")
BASE_URL = os.getenv("ODDS_API_BASE_URL", "https://api.the-odds-api.com/v4")
SPORT_KEY = "icehockey_nhl"
SOURCE = "odds_api"

PROPS_CACHE_TTL = int(os.getenv("PROPS_CACHE_TTL", str(5 * 60)))
PROPS_MAX_EVENTS = int(os.getenv("PROPS_MAX_EVENTS", "4"))
PROPS_BOOKMAKERS = os.getenv("PROPS_BOOKMAKERS", "draftkings,fanduel")
MIN_CREDITS = 10
REQUEST_TIMEOUT = 10

MARKET_OUTCOMES: Dict[str, OutcomeType] = {
    "player_goal_scorer_anytime": OutcomeType.GOALSCORER,
    "player_shots_on_goal": OutcomeType.SHOTS,
    "player_assists": OutcomeType.ASSISTS,
    "player_points": OutcomeType.POINTS,
    "player_total_saves": OutcomeType.SAVES,
}

_OVER_NAMES = {"over", "yes"}
_UNDER_NAMES = {"under", "no"}


class OddsAPIClient:
    """Client for The Odds API NHL player-prop endpoints."""

    def __init__(self, api_key: Optional[str] = None, cache: Optional[TTLCache] = None):
        self.api_key = api_key or API_KEY
        if not self.api_key:
            raise ValueError("THE_ODDS_API_KEY not set in environment")
        self.cache = cache
        self.remaining_credits: Optional[int] = None

    # ------------------------------------------------------------------
    # HTTP
    # ------------------------------------------------------------------

    def _get(self, path: str, params: Dict) -> Optional[object]:
        """GET a JSON payload.  None on transport errors; raises on quota."""
        url = f"{BASE_URL}{path}"
        try:
            response = requests.get(
                url, params={"apiKey": self.api_key, **params}, timeout=REQUEST_TIMEOUT
            )
        except requests.exceptions.RequestException as e:
            logger.error("Odds API error on %s: %s", path, e)
            return None

        if response.status_code in (401, 429):
            raise QuotaExhaustedError(SOURCE, f"Odds API returned {response.status_code}")

        remaining = response.headers.get("x-requests-remaining")
        if remaining is not None:
            try:
                self.remaining_credits = int(float(remaining))
            except ValueError:
                pass

        try:
            response.raise_for_status()
            return response.json()
        except (requests.exceptions.RequestException, ValueError) as e:
            logger.error("Odds API bad response on %s: %s", path, e)
            return None

    def get_events(self, hours_ahead: int = 24) -> List[Dict]:
        """Upcoming NHL events (event listing does not cost credits)."""
        now = datetime.now(timezone.utc)
        params = {
            "commenceTimeFrom": now.strftime("%Y-%m-%dT%H:%M:%SZ"),
            "commenceTimeTo": (now + timedelta(hours=hours_ahead)).strftime("%Y-%m-%dT%H:%M:%SZ"),
        }
        data = self._get(f"/sports/{SPORT_KEY}/events", params)
        events = data if isinstance(data, list) else []
        logger.info(
            "Odds API: %d NHL events, %s credits remaining", len(events), self.remaining_credits
        )
        return events

    def get_event_props(self, event_id: str, markets: Optional[List[str]] = None) -> Optional[Dict]:
        params = {
            "regions": "us",
            "markets": ",".join(markets or MARKET_OUTCOMES),
            "bookmakers": PROPS_BOOKMAKERS,
            "oddsFormat": "american",
        }
        data = self._get(f"/sports/{SPORT_KEY}/events/{event_id}/odds", params)
        return data if isinstance(data, dict) else None

    # ------------------------------------------------------------------
    # Refresh
    # ------------------------------------------------------------------

    def fetch_prop_quotes(self) -> Optional[List[MarketQuote]]:
        """All prop quotes for the next slate.

        Returns None when the market produced no usable data (no events or
        every request failed), which downstream reads as "market presence
        unknown".  Credits below ``MIN_CREDITS`` or a quota error before any
        data raise ``QuotaExhaustedError``; after partial data the source is
        locked out and the partial list is returned.
        """
        events = self.get_events()
        if not events:
            return None

        if self.remaining_credits is not None and self.remaining_credits < MIN_CREDITS:
            raise QuotaExhaustedError(
                SOURCE, f"Odds API credits very low ({self.remaining_credits}); skipping prop fetches"
            )

        quotes: List[MarketQuote] = []
        fetched = 0
        for event in events[:PROPS_MAX_EVENTS]:
            try:
                data = self.get_event_props(event.get("id", ""))
            except QuotaExhaustedError:
                if not fetched:
                    raise
                if self.cache is not None:
                    self.cache.lockout(SOURCE)
                logger.warning("Odds API quota hit mid-refresh; keeping %d events", fetched)
                break
            if data is None:
                continue
            fetched += 1
            quotes.extend(parse_prop_quotes(data))

        if not fetched:
            return None

        logger.info("Odds API: %d prop quotes from %d events", len(quotes), fetched)
        return quotes


# ---------------------------------------------------------------------------
# Parsing
# ---------------------------------------------------------------------------

def parse_prop_quotes(event_data: Dict) -> List[MarketQuote]:
    """Flatten one event's bookmaker/market/outcome tree into quotes.

    Over and under outcomes for the same player, line and book are merged
    into a single quote.  Outcomes without a player or price are dropped.
    """
    merged: Dict[Tuple[str, str, float, str], Dict] = {}

    for bookmaker in event_data.get("bookmakers") or []:
        book = bookmaker.get("key", "")
        for market in bookmaker.get("markets") or []:
            outcome_type = MARKET_OUTCOMES.get(market.get("key", ""))
            if outcome_type is None:
                continue
            for outcome in market.get("outcomes") or []:
                side = (outcome.get("name") or "").lower()
                player = outcome.get("description") or ""
                if not player and side not in _OVER_NAMES | _UNDER_NAMES:
                    # Some books put the player in ``name`` for yes-only markets.
                    player, side = outcome.get("name") or "", "yes"
                price = outcome.get("price")
                if not player or price is None:
                    continue
                line = outcome.get("point")
                line = 0.5 if line is None else float(line)
                key = (player, outcome_type.value, line, book)
                slot = merged.setdefault(key, {"over": None, "under": None})
                if side in _UNDER_NAMES:
                    slot["under"] = int(price)
                elif side in _OVER_NAMES:
                    slot["over"] = int(price)

    quotes = []
    for (player, outcome_value, line, book), prices in merged.items():
        if prices["over"] is None:
            continue
        quotes.append(
            MarketQuote(
                entity_name=player,
                outcome_type=OutcomeType(outcome_value),
                line=line,
                over_price=prices["over"],
                under_price=prices["under"],
                bookmaker=book,
            )
        )
    return quotes


def players_with_props(quotes: Optional[List[MarketQuote]]) -> Optional[Set[str]]:
    """Market-presence set (normalised names), or None when the market is unknown."""
    if quotes is None:
        return None
    return {normalize_player_name(q.entity_name) for q in quotes}


def best_quote(
    quotes: List[MarketQuote],
    name: str,
    outcome_type: OutcomeType,
    line: Optional[float] = None,
) -> Optional[MarketQuote]:
    """Best over price for a player/outcome (optionally at one line)."""
    target = normalize_player_name(name)
    candidates = [
        q for q in quotes
        if q.outcome_type is outcome_type
        and normalize_player_name(q.entity_name) == target
        and (line is None or q.line == line)
    ]
    if not candidates:
        return None
    # Higher American odds always pay more, for favourites and dogs alike.
    return max(candidates, key=lambda q: q.over_price)

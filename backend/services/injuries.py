"""
NHL injury feed and roster availability service.

Provides the authoritative half of the availability reconciliation so the
model never prices a prop for a player who has already been ruled out.

Sources (in priority order):
    1. Manual overrides via API
    2. ESPN NHL team injury reports (public JSON)

Raw ESPN status text is parsed exactly once, in ``parse_espn_status``, into
the closed ``AvailabilityStatus`` type.  Nothing downstream sees raw text.
"""

import logging
import os
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime, timezone
from typing import Dict, List, Optional

import requests
from dotenv import load_dotenv

from backend.core.cache import TTLCache
from backend.core.records import normalize_position
from backend.services.reconciliation import AvailabilityStatus, StatusRecord

load_dotenv()

logger = logging.getLogger(__name__)

ESPN_BASE_URL = os.getenv(
    "ESPN_BASE_URL", "https://site.api.espn.com/apis/site/v2/sports/hockey/nhl"
)
INJURY_CACHE_TTL = int(os.getenv("INJURY_CACHE_TTL", str(2 * 60 * 60)))
REQUEST_TIMEOUT = 10
ESPN_BATCH_SIZE = 8

# ESPN team ids are stable; abbreviations follow the NHL API.
ESPN_TEAM_MAP: Dict[str, str] = {
    "1": "BOS", "2": "BUF", "3": "CGY", "4": "CAR", "5": "CHI", "6": "COL",
    "7": "CBJ", "8": "DAL", "9": "DET", "10": "EDM", "11": "FLA", "12": "LAK",
    "13": "MIN", "14": "MTL", "15": "NSH", "16": "NJD", "17": "NYI", "18": "NYR",
    "19": "OTT", "20": "PHI", "21": "PIT", "22": "SJS", "23": "SEA", "24": "STL",
    "25": "ANA", "26": "TBL", "27": "TOR", "28": "UTA", "29": "VAN", "30": "VGK",
    "31": "WSH", "32": "WPG",
}


# ---------------------------------------------------------------------------
# Parsing
# ---------------------------------------------------------------------------

def parse_espn_status(raw: Optional[str]) -> AvailabilityStatus:
    """Map ESPN's free-text status to ``AvailabilityStatus``.

    Order matters: "long-term injured reserve" must not fall through to IR,
    and "day-to-day" must be checked before the generic "out".  Unrecognised
    or empty text is treated as OUT; a player ESPN bothered to list is more
    likely missing than not.
    """
    text = (raw or "").strip().lower()
    if not text:
        return AvailabilityStatus.OUT
    if "ltir" in text or "long term" in text or "long-term" in text:
        return AvailabilityStatus.LTIR
    if "injured reserve" in text or text == "ir":
        return AvailabilityStatus.IR
    if "day-to-day" in text or "day to day" in text or text in ("dtd", "d"):
        return AvailabilityStatus.DAY_TO_DAY
    if "suspend" in text:
        return AvailabilityStatus.SUSPENDED
    if "question" in text or text == "q":
        return AvailabilityStatus.QUESTIONABLE
    if text in ("active", "healthy", "probable"):
        return AvailabilityStatus.ACTIVE
    return AvailabilityStatus.OUT


def normalize_espn_injury(item: dict, scope: str) -> Optional[StatusRecord]:
    """Build a ``StatusRecord`` from one ESPN injury item.

    Returns None when the item carries no player name; every other missing
    field gets a fallback so one bad item never drops the team.
    """
    if not isinstance(item, dict):
        return None
    athlete = item.get("athlete") or {}
    if not isinstance(athlete, dict):
        return None
    name = athlete.get("displayName") or athlete.get("fullName") or ""
    if not name:
        return None

    details = item.get("details") or {}
    injury_type = (item.get("type") or {}).get("description") or details.get("type") or "Undisclosed"
    raw_status = item.get("status") or ""

    return StatusRecord(
        name=name,
        scope=scope,
        status=parse_espn_status(raw_status),
        position=normalize_position((athlete.get("position") or {}).get("abbreviation")),
        raw_status=raw_status,
        detail=item.get("longComment") or item.get("shortComment") or injury_type,
        entity_id=str(athlete.get("id") or ""),
        source="espn",
        observed_at=datetime.now(timezone.utc),
    )


# ---------------------------------------------------------------------------
# Fetchers
# ---------------------------------------------------------------------------

def fetch_team_injuries(espn_id: str, scope: str) -> List[StatusRecord]:
    """Fetch one team's injury list.  Empty list on any failure."""
    url = f"{ESPN_BASE_URL}/teams/{espn_id}/injuries"
    try:
        resp = requests.get(url, headers={"Accept": "application/json"}, timeout=REQUEST_TIMEOUT)
        resp.raise_for_status()
        payload = resp.json()
    except (requests.RequestException, ValueError) as exc:
        logger.warning("ESPN injuries fetch failed for %s: %s", scope, exc)
        return []
    if not isinstance(payload, dict):
        logger.warning("ESPN injuries for %s: unexpected payload %s", scope, type(payload).__name__)
        return []

    records = []
    for item in payload.get("items") or []:
        record = normalize_espn_injury(item, scope)
        if record is not None:
            records.append(record)
    return records


def fetch_espn_injuries() -> List[StatusRecord]:
    """Fetch every team's injuries, ``ESPN_BATCH_SIZE`` requests at a time."""
    teams = list(ESPN_TEAM_MAP.items())
    records: List[StatusRecord] = []
    with ThreadPoolExecutor(max_workers=ESPN_BATCH_SIZE) as pool:
        for team_records in pool.map(lambda t: fetch_team_injuries(*t), teams):
            records.extend(team_records)
    logger.info("ESPN injuries: %d players listed across %d teams", len(records), len(teams))
    return records


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------

class InjuryService:
    """Serves authoritative status records, cached per reconciliation cycle."""

    CACHE_KEY = ("injuries", "nhl", None)

    def __init__(self, cache: TTLCache, fetcher=fetch_espn_injuries, ttl: int = INJURY_CACHE_TTL):
        self._cache = cache
        self._fetcher = fetcher
        self._ttl = ttl
        self._manual_overrides: List[StatusRecord] = []

    def add_manual_override(self, record: StatusRecord) -> None:
        """Add or replace a manual status (highest priority)."""
        self._manual_overrides = [
            r for r in self._manual_overrides
            if not (r.scope == record.scope and r.normalized_name == record.normalized_name)
        ]
        record.source = "manual"
        self._manual_overrides.append(record)

    def clear_manual_overrides(self) -> None:
        self._manual_overrides = []

    def fetch_statuses(self) -> List[StatusRecord]:
        """All listed players, feed data merged under manual overrides."""
        feed = self._cache.get_or_refresh(
            self.CACHE_KEY, self._ttl, self._fetcher, source="espn", default=[]
        )
        return self._merge_with_overrides(feed)

    def refresh(self) -> List[StatusRecord]:
        """Drop the cached feed and fetch again (scheduler entry point)."""
        self._cache.invalidate(self.CACHE_KEY)
        return self.fetch_statuses()

    def _merge_with_overrides(self, base: List[StatusRecord]) -> List[StatusRecord]:
        override_keys = {(r.scope, r.normalized_name) for r in self._manual_overrides}
        merged = [r for r in base if (r.scope, r.normalized_name) not in override_keys]
        merged.extend(self._manual_overrides)
        return merged

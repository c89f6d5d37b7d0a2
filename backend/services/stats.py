"""
NHL stats API client (api-web.nhle.com).

Fetches the three record shapes the engine consumes and normalises each of
them exactly once:

    player game log  -> ProductionRecord (season + recent window)
    club stats       -> roster ProductionRecords (for impact scoring)
    club stats + standings -> ScopeAggregate (opponent context)

Every fetch goes through the injected TTLCache.  Independent fetches run in
a thread pool, ``FETCH_BATCH_SIZE`` at a time, each with its own timeout; a
failed fetch yields an empty payload and the affected player is skipped.
"""

import logging
import os
from concurrent.futures import ThreadPoolExecutor
from datetime import date
from typing import Dict, Iterable, List, Optional

import requests
from dotenv import load_dotenv

from backend.core.cache import TTLCache
from backend.core.records import (
    ProductionRecord,
    ScopeAggregate,
    SlateEntry,
    normalize_position,
)
from backend.core.sport_config import SportConfig

load_dotenv()

logger = logging.getLogger(__name__)

NHL_API_BASE_URL = os.getenv("NHL_API_BASE_URL", "https://api-web.nhle.com/v1")
STATS_CACHE_TTL = int(os.getenv("STATS_CACHE_TTL", str(60 * 60)))
FETCH_BATCH_SIZE = 10
REQUEST_TIMEOUT = 10
SOURCE = "nhl_api"


def current_season(today: Optional[date] = None) -> str:
    """NHL season id, e.g. ``"20252026"``.  Seasons start in October."""
    today = today or date.today()
    start = today.year if today.month >= 10 else today.year - 1
    return f"{start}{start + 1}"


def parse_toi(value) -> float:
    """``"18:32"`` -> 1112.0 seconds.  Numbers pass through; junk is 0."""
    if value is None:
        return 0.0
    if isinstance(value, (int, float)):
        return float(value)
    parts = str(value).split(":")
    if len(parts) != 2:
        return 0.0
    try:
        return int(parts[0]) * 60 + int(parts[1])
    except ValueError:
        return 0.0


def _full_name(entry: dict) -> str:
    first = entry.get("firstName") or {}
    last = entry.get("lastName") or {}
    if isinstance(first, dict):
        first = first.get("default", "")
    if isinstance(last, dict):
        last = last.get("default", "")
    return f"{first} {last}".strip()


def _int(entry: dict, key: str) -> int:
    try:
        return int(entry.get(key) or 0)
    except (TypeError, ValueError):
        return 0


def _float(entry: dict, key: str, default: float = 0.0) -> float:
    try:
        value = entry.get(key)
        return float(value) if value is not None else default
    except (TypeError, ValueError):
        return default


# ---------------------------------------------------------------------------
# Normalisers
# ---------------------------------------------------------------------------

def normalize_game_log(
    entity_id: str,
    name: str,
    scope: str,
    position: str,
    game_log: List[dict],
    window: int = 5,
) -> ProductionRecord:
    """Build a ProductionRecord from a most-recent-first game log."""
    position = normalize_position(position)
    record = ProductionRecord(entity_id=str(entity_id), name=name, scope=scope, position=position)
    games = [g for g in game_log or [] if isinstance(g, dict)]
    record.games_played = len(games)
    if not games:
        return record

    total_toi = total_pp_toi = recent_pp_toi = 0.0
    for i, game in enumerate(games):
        goals = _int(game, "goals")
        assists = _int(game, "assists")
        points = _int(game, "points") or goals + assists
        shots = _int(game, "shots")
        shots_against = _int(game, "shotsAgainst")
        saves = _int(game, "saves") or max(shots_against - _int(game, "goalsAgainst"), 0)

        record.goals += goals
        record.assists += assists
        record.points += points
        record.shots += shots
        record.pp_points += _int(game, "powerPlayPoints")
        record.saves += saves
        record.shots_against += shots_against
        record.games_started += _int(game, "gamesStarted")
        total_toi += parse_toi(game.get("toi"))
        pp_toi = parse_toi(game.get("ppToi") or game.get("powerPlayToi"))
        total_pp_toi += pp_toi

        if i < window:
            record.recent_games += 1
            record.recent_goals += goals
            record.recent_assists += assists
            record.recent_points += points
            record.recent_shots += shots
            record.recent_saves += saves
            recent_pp_toi += pp_toi

    record.avg_toi_seconds = total_toi / record.games_played
    record.avg_pp_toi_seconds = total_pp_toi / record.games_played
    record.recent_avg_pp_toi_seconds = recent_pp_toi / record.recent_games
    if record.shots_against > 0:
        record.save_pct = record.saves / record.shots_against
    return record


def normalize_club_skater(entry: dict, scope: str) -> ProductionRecord:
    return ProductionRecord(
        entity_id=str(entry.get("playerId", "")),
        name=_full_name(entry),
        scope=scope,
        position=normalize_position(entry.get("positionCode")),
        games_played=_int(entry, "gamesPlayed"),
        goals=_int(entry, "goals"),
        assists=_int(entry, "assists"),
        points=_int(entry, "points"),
        shots=_int(entry, "shots"),
        pp_points=_int(entry, "powerPlayPoints") or _int(entry, "powerPlayGoals"),
        avg_toi_seconds=parse_toi(entry.get("avgTimeOnIcePerGame")),
    )


def normalize_club_goalie(entry: dict, scope: str) -> ProductionRecord:
    return ProductionRecord(
        entity_id=str(entry.get("playerId", "")),
        name=_full_name(entry),
        scope=scope,
        position="G",
        games_played=_int(entry, "gamesPlayed"),
        games_started=_int(entry, "gamesStarted"),
        saves=_int(entry, "saves"),
        shots_against=_int(entry, "shotsAgainst"),
        save_pct=_float(entry, "savePercentage", _float(entry, "savePctg")),
    )


def normalize_scope_aggregate(
    scope: str,
    club_stats: Optional[dict],
    standing: Optional[dict],
    config: Optional[SportConfig] = None,
) -> ScopeAggregate:
    """Team context with league-average fallbacks for anything missing."""
    config = config or SportConfig.nhl()
    agg = ScopeAggregate(
        scope=scope,
        goals_for_per_game=config.league_goals_against,
        goals_against_per_game=config.league_goals_against,
        shots_for_per_game=config.league_shots_per_game,
        shots_against_per_game=config.league_shots_per_game,
        save_pct=config.league_save_pct,
    )

    games = _int(standing or {}, "gamesPlayed")
    if games > 0:
        agg.games_played = games
        agg.goals_for_per_game = _int(standing, "goalFor") / games
        agg.goals_against_per_game = _int(standing, "goalAgainst") / games

    club_stats = club_stats or {}
    goalies = [g for g in club_stats.get("goalies") or [] if isinstance(g, dict)]
    if goalies:
        starter = max(goalies, key=lambda g: (_int(g, "gamesStarted"), _int(g, "gamesPlayed")))
        save_pct = _float(starter, "savePercentage", _float(starter, "savePctg"))
        if save_pct > 0:
            agg.save_pct = save_pct
        if games > 0:
            shots_against = sum(_int(g, "shotsAgainst") for g in goalies)
            if shots_against:
                agg.shots_against_per_game = shots_against / games

    skaters = [s for s in club_stats.get("skaters") or [] if isinstance(s, dict)]
    if skaters and games > 0:
        shots_for = sum(_int(s, "shots") for s in skaters)
        if shots_for:
            agg.shots_for_per_game = shots_for / games

    return agg


# ---------------------------------------------------------------------------
# Client
# ---------------------------------------------------------------------------

class NHLStatsClient:
    """Cached, batched reads from the NHL web API."""

    def __init__(self, cache: TTLCache, config: Optional[SportConfig] = None, ttl: int = STATS_CACHE_TTL):
        self.cache = cache
        self.config = config or SportConfig.nhl()
        self.ttl = ttl

    def _get_json(self, path: str):
        url = f"{NHL_API_BASE_URL}{path}"
        response = requests.get(url, headers={"Accept": "application/json"}, timeout=REQUEST_TIMEOUT)
        response.raise_for_status()
        return response.json()

    # -- raw payloads (cached) -----------------------------------------

    def get_game_log(self, entity_id: str) -> List[dict]:
        def produce():
            data = self._get_json(f"/player/{entity_id}/game-log/{current_season()}/2")
            if not isinstance(data, dict):
                logger.warning("Unexpected game log payload for %s: %s", entity_id, type(data).__name__)
                return []
            return [g for g in data.get("gameLog") or [] if isinstance(g, dict)]

        return self.cache.get_or_refresh(
            ("game_log", str(entity_id), None), self.ttl, produce, source=SOURCE, default=[]
        )

    def get_club_stats(self, scope: str) -> dict:
        def produce():
            data = self._get_json(f"/club-stats/{scope}/now")
            if not isinstance(data, dict):
                logger.warning("Unexpected club stats payload for %s: %s", scope, type(data).__name__)
                return {}
            return data

        return self.cache.get_or_refresh(
            ("club_stats", scope, None), self.ttl, produce, source=SOURCE, default={}
        )

    def get_standings(self) -> Dict[str, dict]:
        def produce():
            data = self._get_json("/standings/now")
            if not isinstance(data, dict):
                logger.warning("Unexpected standings payload: %s", type(data).__name__)
                return {}
            by_team = {}
            for row in data.get("standings") or []:
                if not isinstance(row, dict):
                    continue
                abbrev = row.get("teamAbbrev")
                if isinstance(abbrev, dict):
                    abbrev = abbrev.get("default")
                if abbrev:
                    by_team[abbrev] = row
            return by_team

        return self.cache.get_or_refresh(
            ("standings", "nhl", None), self.ttl, produce, source=SOURCE, default={}
        )

    # -- normalised records --------------------------------------------

    def production_record(self, entry: SlateEntry) -> ProductionRecord:
        return normalize_game_log(
            entry.entity_id,
            entry.name,
            entry.scope,
            entry.position,
            self.get_game_log(entry.entity_id),
            window=self.config.recent_window_games,
        )

    def production_records(self, entries: Iterable[SlateEntry]) -> Dict[str, ProductionRecord]:
        """Production records keyed by entity id, fetched in bounded batches."""
        entries = list(entries)
        records: Dict[str, ProductionRecord] = {}
        with ThreadPoolExecutor(max_workers=FETCH_BATCH_SIZE) as pool:
            for start in range(0, len(entries), FETCH_BATCH_SIZE):
                batch = entries[start:start + FETCH_BATCH_SIZE]
                futures = [(entry, pool.submit(self.production_record, entry)) for entry in batch]
                for entry, future in futures:
                    try:
                        records[entry.entity_id] = future.result()
                    except Exception as e:
                        logger.warning("Skipping %s (%s): %s", entry.name, entry.entity_id, e)
        return records

    def team_roster(self, scope: str) -> List[ProductionRecord]:
        club = self.get_club_stats(scope)
        skaters = [normalize_club_skater(s, scope) for s in club.get("skaters") or [] if isinstance(s, dict)]
        goalies = [normalize_club_goalie(g, scope) for g in club.get("goalies") or [] if isinstance(g, dict)]
        return skaters + goalies

    def scope_aggregate(self, scope: str) -> ScopeAggregate:
        return normalize_scope_aggregate(
            scope, self.get_club_stats(scope), self.get_standings().get(scope), self.config
        )

    def scope_aggregates(self, scopes: Iterable[str]) -> Dict[str, ScopeAggregate]:
        scopes = sorted(set(scopes))
        with ThreadPoolExecutor(max_workers=FETCH_BATCH_SIZE) as pool:
            return dict(zip(scopes, pool.map(self.scope_aggregate, scopes)))

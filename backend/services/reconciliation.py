"""
Availability reconciliation across the injury feed and the prop market.

Two independent signals say whether a player will dress tonight:

    1. The authoritative status feed (ESPN injuries), parsed upstream into
       the closed ``AvailabilityStatus`` type.
    2. Market presence: does any book list a prop for the player?  Books
       pull props quickly on scratches and post them quickly on returns.

``resolve_verdict`` combines them with an intentional asymmetry: market
presence never upgrades an explicit negative status into a confident
"available".  It only downgrades the verdict to "uncertain" so a human can
review the game-time decision.  How "uncertain" is acted on is a policy
(``UncertainPolicy``), not part of the verdict.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Dict, Iterable, List, Optional, Set, Tuple

from backend.services.names import normalize_player_name

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Data structures
# ---------------------------------------------------------------------------

class AvailabilityStatus(str, Enum):
    """Closed set of authoritative statuses.  Only feed parsers create these."""

    ACTIVE = "ACTIVE"
    QUESTIONABLE = "QUESTIONABLE"
    DAY_TO_DAY = "DAY_TO_DAY"
    OUT = "OUT"
    IR = "IR"
    LTIR = "LTIR"
    SUSPENDED = "SUSPENDED"

    @property
    def is_unavailable(self) -> bool:
        return self in UNAVAILABLE_STATUSES


UNAVAILABLE_STATUSES = frozenset({
    AvailabilityStatus.OUT,
    AvailabilityStatus.DAY_TO_DAY,
    AvailabilityStatus.IR,
    AvailabilityStatus.LTIR,
    AvailabilityStatus.SUSPENDED,
})


class MarketPresence(str, Enum):
    PRESENT = "present"
    ABSENT = "absent"
    UNKNOWN = "unknown"


class Verdict(str, Enum):
    AVAILABLE = "available"
    UNAVAILABLE = "unavailable"
    UNCERTAIN = "uncertain"


class UncertainPolicy(str, Enum):
    """How downstream consumers act on an uncertain verdict."""

    CONSERVATIVE = "conservative"  # uncertain -> unavailable
    PERMISSIVE = "permissive"      # uncertain -> available


@dataclass
class StatusRecord:
    """One authoritative observation about a player (an availability fact)."""

    name: str
    scope: str
    status: AvailabilityStatus
    position: str = "F"
    raw_status: str = ""
    detail: str = ""
    entity_id: str = ""
    games_missed: int = 5
    source: str = "espn"
    observed_at: Optional[datetime] = None

    @property
    def normalized_name(self) -> str:
        return normalize_player_name(self.name)


@dataclass
class ConsensusVerdict:
    """Reconciled availability for one player."""

    name: str
    scope: str
    verdict: Verdict
    agreement: int
    sources_consulted: int
    market: MarketPresence
    authoritative: AvailabilityStatus = AvailabilityStatus.ACTIVE
    rationale: str = ""
    record: Optional[StatusRecord] = field(default=None, repr=False)

    def is_unavailable(self, policy: UncertainPolicy = UncertainPolicy.CONSERVATIVE) -> bool:
        return is_unavailable(self, policy)


# ---------------------------------------------------------------------------
# Rules
# ---------------------------------------------------------------------------

def market_presence(normalized_name: str, market_entities: Optional[Set[str]]) -> MarketPresence:
    """Presence of a player in the prop market.

    ``None`` means the market source produced no data this cycle (failure,
    lockout, no events); an empty set is a real answer ("nobody listed").
    """
    if market_entities is None:
        return MarketPresence.UNKNOWN
    if normalized_name in market_entities:
        return MarketPresence.PRESENT
    return MarketPresence.ABSENT


def resolve_verdict(
    name: str,
    scope: str,
    status: AvailabilityStatus,
    market: MarketPresence,
    record: Optional[StatusRecord] = None,
) -> ConsensusVerdict:
    """Apply the two-source rules to one player.

    ==============  ========  ===========  =========  =======
    Authoritative   Market    Verdict      Agreement  Sources
    ==============  ========  ===========  =========  =======
    unavailable     absent    unavailable  2          2
    unavailable     unknown   unavailable  1          1
    unavailable     present   uncertain    0          2
    available       present   available    2          2
    available       absent    available    1          2
    available       unknown   available    1          1
    ==============  ========  ===========  =========  =======
    """
    sources = 1 if market is MarketPresence.UNKNOWN else 2

    if status.is_unavailable:
        if market is MarketPresence.PRESENT:
            verdict, agreement = Verdict.UNCERTAIN, 0
            rationale = f"Feed lists {status.value} but books have props: game-time decision?"
        elif market is MarketPresence.ABSENT:
            verdict, agreement = Verdict.UNAVAILABLE, 2
            rationale = f"Feed lists {status.value}, no props listed"
        else:
            verdict, agreement = Verdict.UNAVAILABLE, 1
            rationale = f"Feed lists {status.value}, market data unavailable"
    else:
        verdict = Verdict.AVAILABLE
        if market is MarketPresence.PRESENT:
            agreement = 2
            rationale = "Not on injury list, has props"
        else:
            agreement = 1
            rationale = (
                "Not on injury list (no props listed)"
                if market is MarketPresence.ABSENT
                else "Not on injury list"
            )

    return ConsensusVerdict(
        name=name,
        scope=scope,
        verdict=verdict,
        agreement=agreement,
        sources_consulted=sources,
        market=market,
        authoritative=status,
        rationale=rationale,
        record=record,
    )


def is_unavailable(
    verdict: ConsensusVerdict,
    policy: UncertainPolicy = UncertainPolicy.CONSERVATIVE,
) -> bool:
    """Single decision point for acting on a verdict."""
    if verdict.verdict is Verdict.UNAVAILABLE:
        return True
    if verdict.verdict is Verdict.UNCERTAIN:
        return policy is UncertainPolicy.CONSERVATIVE
    return False


def reconcile(
    status_records: Iterable[StatusRecord],
    market_entities: Optional[Set[str]],
    roster: Optional[Iterable[Tuple[str, str]]] = None,
) -> Dict[Tuple[str, str], ConsensusVerdict]:
    """Reconcile every listed player (and optionally a roster) into verdicts.

    Args:
        status_records: Parsed authoritative records for injured players.
        market_entities: Normalised names with a prop listed, or None.
        roster: Optional ``(name, scope)`` pairs for healthy players that
            should also receive an "available" verdict.

    Returns:
        Verdicts keyed by ``(scope, normalised name)`` so namesakes on
        different teams stay separate.  A player listed twice by the feed
        keeps the first (most severe source order) record.
    """
    verdicts: Dict[Tuple[str, str], ConsensusVerdict] = {}

    for record in status_records:
        name_key = record.normalized_name
        key = (record.scope, name_key)
        if not name_key or key in verdicts:
            continue
        verdicts[key] = resolve_verdict(
            record.name,
            record.scope,
            record.status,
            market_presence(name_key, market_entities),
            record=record,
        )

    for name, scope in roster or ():
        name_key = normalize_player_name(name)
        key = (scope, name_key)
        if not name_key or key in verdicts:
            continue
        verdicts[key] = resolve_verdict(
            name,
            scope,
            AvailabilityStatus.ACTIVE,
            market_presence(name_key, market_entities),
        )

    return verdicts


def summarize_verdicts(
    verdicts: Iterable[ConsensusVerdict],
    status_count: int,
    market_entities: Optional[Set[str]],
) -> Dict[str, int]:
    """Validation summary for a reconciliation cycle (logged and shown on /status)."""
    summary = {
        "status_count": status_count,
        "market_count": len(market_entities) if market_entities is not None else 0,
        "agreed_unavailable": 0,
        "agreed_available": 0,
        "uncertain": 0,
    }
    for v in verdicts:
        if v.verdict is Verdict.UNCERTAIN:
            summary["uncertain"] += 1
        elif v.verdict is Verdict.UNAVAILABLE:
            summary["agreed_unavailable"] += 1
        else:
            summary["agreed_available"] += 1
    return summary


def unavailable_by_scope(
    verdicts: Iterable[ConsensusVerdict],
    policy: UncertainPolicy = UncertainPolicy.CONSERVATIVE,
) -> Dict[str, List[ConsensusVerdict]]:
    """Group the verdicts the policy treats as unavailable by team."""
    grouped: Dict[str, List[ConsensusVerdict]] = {}
    for v in verdicts:
        if is_unavailable(v, policy):
            grouped.setdefault(v.scope, []).append(v)
    return grouped

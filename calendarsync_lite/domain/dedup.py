"""Event deduplication, merge resolution and similarity scanning.

Every duplicate check derives its identity from ``dedup_key``. ``merge`` is the
only place events from different origins meet; it never deletes local events and
never lets one external origin silently replace the other.
"""

from __future__ import annotations

import logging
import re
from collections import defaultdict
from dataclasses import dataclass, field
from datetime import date
from typing import Any, Iterable, NamedTuple, Optional

from ..calendar.text_utils import normalize_title
from ..sync_models import CanonicalEvent, OriginKind

logger = logging.getLogger(__name__)

DEFAULT_SIMILARITY_THRESHOLD = 0.8

_VENDOR_BOOKING_UID = re.compile(r"^beds24-(\d+)$")
_ICAL_BOOKING_REFERENCE = re.compile(r"-b(\d+)@beds24\.com", re.IGNORECASE)


class DedupKey(NamedTuple):
    """Identity used to collapse repeated copies of one occurrence.

    ``basis`` is ``"uid"`` when derived from the provider UID and ``"title"``
    when derived from the normalized title and start date.
    """

    basis: str
    value: str
    day: date


def dedup_key(event: CanonicalEvent, prefer_uid: bool = True) -> DedupKey:
    """Derive the DedupKey for ``event``.

    Args:
        event: Event to key
        prefer_uid: Use the provider UID when the event has one; pass False to get
            the title/date key of an external event

    Returns:
        DedupKey
    """
    origin = event.origin
    if prefer_uid and origin.is_external and origin.provider_uid:
        day = origin.occurrence_date or event.start_time.date()
        return DedupKey("uid", origin.provider_uid, day)
    return DedupKey("title", normalize_title(event.title), event.start_time.date())


def _vendor_booking_ids(events: Iterable[CanonicalEvent]) -> set[str]:
    booking_ids: set[str] = set()
    for event in events:
        if event.origin_kind != OriginKind.VENDOR_API:
            continue
        match = _VENDOR_BOOKING_UID.match(event.origin.provider_uid or "")
        if match:
            booking_ids.add(match.group(1))
    return booking_ids


def _yields_to_vendor(event: CanonicalEvent, booking_ids: set[str]) -> bool:
    """True for an ical event that mirrors a booking present from the vendor API."""
    if event.origin_kind != OriginKind.ICAL or not booking_ids:
        return False
    match = _ICAL_BOOKING_REFERENCE.search(event.origin.provider_uid or "")
    return bool(match and match.group(1) in booking_ids)


def _survivor_key(event: CanonicalEvent) -> tuple[OriginKind, Any]:
    # Local events are user-owned records; only identical ids collapse
    if not event.origin.is_external:
        return (OriginKind.LOCAL, event.id)
    return (event.origin_kind, dedup_key(event))


def merge(
    existing: Iterable[CanonicalEvent],
    incoming: Iterable[CanonicalEvent],
) -> list[CanonicalEvent]:
    """Merge two event collections into one deduplicated, ordered list.

    Rules:
    - External events with the same origin kind and DedupKey collapse to one; the incoming
      copy wins. Local events collapse only when their ids match.
    - An ical event whose UID references a vendor booking (``...-b{id}@beds24.com``)
      is dropped when that booking is present as a vendor-api event. ical and
      vendor-api events are otherwise never dropped in favor of each other.
    - A local event with the same normalized title and date as an external event
      is kept with ``conflict_with`` set to that event's id.

    The result is sorted by (start time, id) and ``merge(merge(a, b), b)`` equals
    ``merge(a, b)``.
    """
    survivors: dict[tuple[OriginKind, Any], CanonicalEvent] = {}
    for event in existing:
        survivors[_survivor_key(event)] = event
    for event in incoming:
        survivors[_survivor_key(event)] = event

    booking_ids = _vendor_booking_ids(survivors.values())
    externals: list[CanonicalEvent] = []
    locals_: list[CanonicalEvent] = []
    dropped = 0
    for event in survivors.values():
        if event.origin.is_external:
            if _yields_to_vendor(event, booking_ids):
                dropped += 1
                continue
            externals.append(event)
        else:
            locals_.append(event)

    if dropped:
        logger.debug("Dropped %d ical events mirrored by vendor bookings", dropped)

    external_by_title: dict[DedupKey, list[str]] = defaultdict(list)
    for event in externals:
        external_by_title[dedup_key(event, prefer_uid=False)].append(event.id)

    flagged: list[CanonicalEvent] = []
    for event in locals_:
        matches = external_by_title.get(dedup_key(event))
        conflict = min(matches) if matches else None
        if conflict != event.conflict_with:
            event = event.model_copy(update={"conflict_with": conflict})
        flagged.append(event)

    merged = externals + flagged
    merged.sort(key=lambda e: (e.start_time, e.id))
    return merged


def levenshtein(a: str, b: str) -> int:
    """Return the edit distance between ``a`` and ``b``."""
    if a == b:
        return 0
    if not a:
        return len(b)
    if not b:
        return len(a)
    previous = list(range(len(b) + 1))
    for i, char_a in enumerate(a, start=1):
        current = [i]
        for j, char_b in enumerate(b, start=1):
            cost = 0 if char_a == char_b else 1
            current.append(min(previous[j] + 1, current[j - 1] + 1, previous[j - 1] + cost))
        previous = current
    return previous[-1]


def string_similarity(a: str, b: str) -> float:
    """Return 1 - levenshtein / max length, in [0, 1]."""
    if a == b:
        return 1.0
    longest = max(len(a), len(b))
    if longest == 0:
        return 1.0
    return 1.0 - levenshtein(a, b) / longest


def date_overlap_ratio(a: CanonicalEvent, b: CanonicalEvent) -> float:
    """Overlap of the two intervals divided by their union, in [0, 1]."""
    latest_start = max(a.start_time, b.start_time)
    earliest_end = min(a.end_time, b.end_time)
    union = (max(a.end_time, b.end_time) - min(a.start_time, b.start_time)).total_seconds()
    if union <= 0:
        return 1.0 if a.start_time == b.start_time else 0.0
    overlap = (earliest_end - latest_start).total_seconds()
    return max(overlap, 0.0) / union


def _hours_apart(a: Any, b: Any) -> float:
    return abs((a - b).total_seconds()) / 3600


def weighted_similarity(a: CanonicalEvent, b: CanonicalEvent) -> float:
    """Score a pair on title (x3), description (x2), start (x2) and end (x1)."""
    score = 3 * string_similarity(a.title.lower(), b.title.lower())

    if a.description and b.description:
        score += 2 * string_similarity(a.description.lower(), b.description.lower())
    elif not a.description and not b.description:
        score += 2

    start_gap = _hours_apart(a.start_time, b.start_time)
    if start_gap == 0:
        score += 2
    elif start_gap <= 1:
        score += 1.5
    elif start_gap <= 24:
        score += 1

    end_gap = _hours_apart(a.end_time, b.end_time)
    if end_gap == 0:
        score += 1
    elif end_gap <= 1:
        score += 0.5

    return score / 8


@dataclass
class SimilarityGroup:
    """Events judged near-identical, reported for human review."""

    events: list[CanonicalEvent]
    similarity: float
    owner_user_id: str

    def to_dict(self) -> dict[str, Any]:
        return {
            "ownerUserId": self.owner_user_id,
            "similarity": round(self.similarity, 4),
            "events": [event.to_api_dict() for event in self.events],
        }


@dataclass
class _UnionFind:
    parent: dict[str, str] = field(default_factory=dict)

    def find(self, item: str) -> str:
        root = self.parent.setdefault(item, item)
        while root != self.parent[root]:
            root = self.parent[root]
        self.parent[item] = root
        return root

    def union(self, a: str, b: str) -> None:
        root_a, root_b = self.find(a), self.find(b)
        if root_a != root_b:
            self.parent[max(root_a, root_b)] = min(root_a, root_b)


def similarity_scan(
    events: Iterable[CanonicalEvent],
    threshold: float = DEFAULT_SIMILARITY_THRESHOLD,
    origin_kinds: Optional[set[OriginKind]] = None,
) -> list[SimilarityGroup]:
    """Group events whose title ratio and date overlap both reach ``threshold``.

    Only events of the same owner are compared. Linked pairs are joined
    transitively into groups. Nothing is removed; callers decide.

    Args:
        events: Events to scan
        threshold: Minimum title and date-overlap ratio, in [0, 1]
        origin_kinds: Restrict the scan to these origin kinds (all when None)

    Returns:
        Groups ordered by descending similarity
    """
    candidates = [
        event for event in events if origin_kinds is None or event.origin_kind in origin_kinds
    ]
    by_id = {event.id: event for event in candidates}
    links = _UnionFind()
    best_score: dict[tuple[str, str], float] = {}

    for i, first in enumerate(candidates):
        for second in candidates[i + 1 :]:
            if first.owner_user_id != second.owner_user_id or first.id == second.id:
                continue
            if string_similarity(first.title.lower(), second.title.lower()) < threshold:
                continue
            if date_overlap_ratio(first, second) < threshold:
                continue
            links.union(first.id, second.id)
            best_score[(first.id, second.id)] = weighted_similarity(first, second)

    members: dict[str, list[str]] = defaultdict(list)
    for event_id in links.parent:
        members[links.find(event_id)].append(event_id)

    groups: list[SimilarityGroup] = []
    for root, ids in members.items():
        id_set = set(ids)
        score = max(s for pair, s in best_score.items() if pair[0] in id_set)
        group_events = sorted((by_id[i] for i in ids), key=lambda e: (e.start_time, e.id))
        groups.append(SimilarityGroup(group_events, score, by_id[root].owner_user_id))

    groups.sort(key=lambda g: (-g.similarity, g.events[0].id))
    logger.info("Similarity scan: %d events -> %d groups", len(candidates), len(groups))
    return groups


def find_exact_duplicates(events: Iterable[CanonicalEvent]) -> list[list[CanonicalEvent]]:
    """Return groups of events sharing owner, title, start and end."""
    buckets: dict[tuple[Any, ...], list[CanonicalEvent]] = defaultdict(list)
    for event in events:
        buckets[(event.owner_user_id, event.title, event.start_time, event.end_time)].append(event)
    return [sorted(group, key=lambda e: e.id) for group in buckets.values() if len(group) > 1]

"""
DuplicateResolver - finds live entities sharing one identifier and proposes
which one keeps it.

Canonical member, in order:
  1. code match against the latest snapshot of the identifier
  2. name match against the same snapshot (first non-empty candidate field)
  3. lowest element id
Every other member gets a freshly generated identifier.
"""

import logging
import re
from concurrent.futures import ThreadPoolExecutor
from typing import Dict, Iterable, List, Optional, Sequence

from ..errors import IdentifierError
from .models import DuplicateAction, DuplicateGroup, DuplicateMember, MatchReason
from .records import Category, DEFAULT_NAME_FIELDS, SnapshotRecord, normalize_track_id

logger = logging.getLogger(__name__)

DEFAULT_CODE_FIELDS = ("Number", "Numéro", "Mark", "Marque")

DEFAULT_PREFIXES = {
    Category.ROOM: "ROOM",
    Category.OPENING: "DOOR",
    Category.GENERIC: "ELEM",
}

DEFAULT_ID_WIDTH = 4


def generate_next_id(existing_ids: Iterable[str], prefix: str, width: int = DEFAULT_ID_WIDTH) -> str:
    """
    Next free PREFIX-NNNN identifier.

    Takes the highest number among identifiers matching the prefix
    (case-insensitive), adds one, and keeps incrementing until the candidate
    collides with nothing in existing_ids.
    """
    if not prefix:
        raise IdentifierError("Identifier prefix must not be empty")

    taken = {normalize_track_id(i) for i in existing_ids if i}
    pattern = re.compile(rf"^{re.escape(prefix)}-(\d+)$", re.IGNORECASE)

    highest = 0
    for track_id in taken:
        match = pattern.match(track_id)
        if match:
            highest = max(highest, int(match.group(1)))

    number = highest + 1
    while True:
        candidate = f"{prefix}-{number:0{width}d}"
        if normalize_track_id(candidate) not in taken:
            return candidate
        number += 1


class DuplicateResolver:
    """
    Detects duplicated identifiers and applies the proposed fixes.

    Usage:
        resolver = DuplicateResolver(store, project_id="P1")
        groups = resolver.detect(document.list_entities())
        resolver.apply(document, groups)
    """

    def __init__(
        self,
        store=None,
        project_id: str = "",
        code_fields: Sequence[str] = DEFAULT_CODE_FIELDS,
        name_fields: Sequence[str] = DEFAULT_NAME_FIELDS,
        prefixes: Optional[Dict[Category, str]] = None,
        width: int = DEFAULT_ID_WIDTH,
        max_workers: int = 4,
    ):
        self.store = store
        self.project_id = project_id
        self.code_fields = tuple(code_fields)
        self.name_fields = tuple(name_fields)
        self.prefixes = dict(DEFAULT_PREFIXES)
        self.prefixes.update(prefixes or {})
        self.width = width
        self.max_workers = max(1, max_workers)

    def detect(self, entities: Sequence) -> List[DuplicateGroup]:
        """Group live entities by identifier and resolve groups of two or more."""
        groups: Dict[str, List] = {}
        for entity in entities:
            key = normalize_track_id(entity.track_id)
            if key:
                groups.setdefault(key, []).append(entity)
        duplicated = {
            key: sorted(members, key=lambda e: e.element_id)
            for key, members in sorted(groups.items())
            if len(members) > 1
        }
        if not duplicated:
            return []

        logger.info("Found %d duplicated identifiers", len(duplicated))
        history = self._lookup_all(duplicated)

        existing = [e.track_id for e in entities if e.track_id]
        results = []
        for key, members in duplicated.items():
            record, failed = history.get(key, (None, False))
            group = self._resolve(members, record, existing)
            group.lookup_failed = failed
            results.append(group)
        return results

    def _lookup_all(self, duplicated: Dict[str, List]) -> Dict[str, tuple]:
        """Latest snapshot per identifier, fetched concurrently."""
        if self.store is None:
            return {}

        def lookup(key: str):
            track_id = duplicated[key][0].track_id.strip()
            try:
                return key, (self.store.get_latest_by_track_id(track_id, self.project_id), False)
            except Exception as e:
                logger.warning(
                    "Snapshot lookup for %s failed (%s); falling back to lowest element id",
                    track_id, e,
                )
                return key, (None, True)

        workers = min(self.max_workers, len(duplicated))
        with ThreadPoolExecutor(max_workers=workers) as pool:
            return dict(pool.map(lookup, list(duplicated)))

    def _resolve(self, members: List, record: Optional[SnapshotRecord], existing: List[str]) -> DuplicateGroup:
        ordered = sorted(members, key=lambda e: e.element_id)
        canonical, reason = None, MatchReason.ORDINAL

        if record is not None:
            snapshot_code = _clean(record.indexed.code)
            if snapshot_code:
                matches = [e for e in ordered if self._live_code(e) == snapshot_code]
                if matches:
                    canonical, reason = matches[0], MatchReason.CODE

            if canonical is None:
                snapshot_name = _clean(record.display_name(self.name_fields))
                if snapshot_name:
                    matches = [e for e in ordered if self._live_name(e) == snapshot_name]
                    if matches:
                        canonical, reason = matches[0], MatchReason.NAME

        if canonical is None:
            canonical = ordered[0]

        category = canonical.category
        prefix = self.prefixes.get(category, "ELEM")
        group = DuplicateGroup(track_id=canonical.track_id, category=category)
        for entity in ordered:
            member = DuplicateMember(
                element_id=entity.element_id,
                code=self._live_code(entity),
                name=self._live_name(entity),
            )
            if entity is canonical:
                member.action = DuplicateAction.KEEP
                member.match_reason = reason
            else:
                member.action = DuplicateAction.REGENERATE
                member.new_track_id = generate_next_id(existing, prefix, self.width)
                existing.append(member.new_track_id)
            group.members.append(member)

        logger.debug(
            "%s: keeping #%d (%s), regenerating %d",
            group.track_id, canonical.element_id, reason.value, len(group.regenerated),
        )
        return group

    def apply(self, document, groups: Sequence[DuplicateGroup]) -> int:
        """
        Write the proposed identifiers inside one transaction.

        Returns the number of entities re-identified.
        """
        writes = [
            (member.element_id, member.new_track_id)
            for group in groups
            for member in group.regenerated
            if member.new_track_id
        ]
        if not writes:
            return 0

        count = 0
        with document.transaction("Fix duplicate identifiers"):
            for element_id, new_track_id in writes:
                entity = document.get_entity(element_id)
                if entity is None:
                    logger.warning("Element #%d disappeared, identifier not changed", element_id)
                    continue
                document.set_track_id(entity, new_track_id)
                count += 1
        logger.info("Re-identified %d entities", count)
        return count

    def _live_code(self, entity) -> str:
        return self._first_text(entity, self.code_fields)

    def _live_name(self, entity) -> str:
        return self._first_text(entity, self.name_fields)

    @staticmethod
    def _first_text(entity, fields: Sequence[str]) -> str:
        for name in fields:
            handle = entity.parameters.get(name)
            if handle is None or handle.value is None:
                continue
            text = _clean(handle.display or str(handle.value))
            if text:
                return text
        return ""


def _clean(value: Optional[str]) -> str:
    return (value or "").strip()

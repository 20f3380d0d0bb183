"""Reference-entity resolution.

For one entity kind, the EntityResolver turns every reference sighted in a
batch of typed records into a persisted identifier:

    1. extract distinct candidates (deduplicated by natural key)
    2. one bulk read of the persisted entities of the kind
    3. one in-memory index per identifying attribute
    4. probe each candidate in priority order; a hit is cached immediately
    5. bulk insert the misses and cache the returned rows by the key
       recomputed from the returned attributes
    6. references to prior kinds (a location's organization) come from the
       caches already published in the run's ResolutionContext

The same resolver class serves all seven kinds; RESOLUTION_ORDER declares the
sequence the orchestrator runs them in and RESOLUTION_DEPENDENCIES the kinds
each one needs resolved first.
"""

import logging
from dataclasses import dataclass, field
from typing import Iterator, Optional, Sequence, Union

from rx_loader.domain.natural_keys import KEY_ATTRIBUTES, KEY_COLUMNS, Attributes, key_rank, natural_key
from rx_loader.domain.ports import StageFatalError, StoragePort
from rx_loader.domain.records import EntityKind, ErrorCategory, RowError
from rx_loader.domain.references import EntityCandidate, TypedRecord, extract_candidates

logger = logging.getLogger(__name__)

DEFAULT_INSERT_CHUNK_SIZE = 1000


# ============================================================================
# Declared resolution order
# ============================================================================

RESOLUTION_ORDER: tuple[EntityKind, ...] = (
    EntityKind.ORGANIZATION,
    EntityKind.PHARMACY,
    EntityKind.PRESCRIBER,
    EntityKind.LOCATION,
    EntityKind.DRUG,
    EntityKind.PATIENT,
    EntityKind.INSURANCE_PLAN,
)

RESOLUTION_DEPENDENCIES: dict[EntityKind, tuple[EntityKind, ...]] = {
    EntityKind.LOCATION: (EntityKind.ORGANIZATION,),
}


def dependencies_of(kind: EntityKind) -> set[EntityKind]:
    """All kinds ``kind`` depends on, transitively."""
    found: set[EntityKind] = set()
    stack = list(RESOLUTION_DEPENDENCIES.get(kind, ()))
    while stack:
        dependency = stack.pop()
        if dependency not in found:
            found.add(dependency)
            stack.extend(RESOLUTION_DEPENDENCIES.get(dependency, ()))
    return found


# ============================================================================
# Per-run context
# ============================================================================

class ResolutionCache:
    """Natural key -> persisted id for one entity kind within one run."""

    def __init__(self, kind: EntityKind):
        self.kind = kind
        self._ids: dict[str, str] = {}

    def get(self, key: Optional[str]) -> Optional[str]:
        if key is None:
            return None
        return self._ids.get(key)

    def put(self, key: Optional[str], entity_id: str) -> None:
        if key is not None:
            self._ids.setdefault(key, entity_id)

    def __contains__(self, key: object) -> bool:
        return key in self._ids

    def __len__(self) -> int:
        return len(self._ids)

    def __iter__(self) -> Iterator[str]:
        return iter(self._ids)


class ResolutionContext:
    """Resolution state of a single import run.

    Holds one kind-scoped cache per entity kind, so equal key strings of
    different kinds never collide, and remembers which kinds could not be
    resolved. Created by the orchestrator at run start and dropped at run end.
    """

    def __init__(self):
        self._caches = {kind: ResolutionCache(kind) for kind in EntityKind}
        self.failed_kinds: set[EntityKind] = set()

    def cache_for(self, kind: EntityKind) -> ResolutionCache:
        return self._caches[kind]

    def lookup(self, kind: EntityKind, key: Optional[str]) -> Optional[str]:
        return self._caches[kind].get(key)

    def mark_failed(self, kind: EntityKind) -> None:
        self.failed_kinds.add(kind)

    def blocking_failure(self, kind: EntityKind) -> Optional[EntityKind]:
        """A failed kind that ``kind`` depends on, if any."""
        for dependency in RESOLUTION_ORDER:
            if dependency in self.failed_kinds and dependency in dependencies_of(kind):
                return dependency
        return None


@dataclass
class ResolutionOutcome:
    """Result of resolving one entity kind.

    Attributes:
        kind: Entity kind
        candidates: Distinct candidates extracted from the records
        matched: Candidates resolved to an entity that already existed
        created: Entities inserted by this run
        errors: EntityCreationFailed errors (the run continues)
    """

    kind: EntityKind
    candidates: int = 0
    matched: int = 0
    created: int = 0
    errors: list[RowError] = field(default_factory=list)


# ============================================================================
# Resolver
# ============================================================================

class _Pending:
    """A candidate scheduled for creation, plus keys of sightings merged into it."""

    def __init__(self, candidate: EntityCandidate):
        self.candidate = candidate
        self.aliases: list[str] = []

    @property
    def keys(self) -> list[str]:
        return [self.candidate.key] + self.aliases


Target = Union[str, _Pending]


class _EntityIndex:
    """One lookup map per identifying attribute of a kind."""

    def __init__(self, kind: EntityKind):
        self.attributes = KEY_ATTRIBUTES[kind]
        self._maps: dict[str, dict[str, tuple[Target, Attributes]]] = {
            attribute.name: {} for attribute in self.attributes
        }

    def add(self, attributes: Attributes, target: Target) -> None:
        for attribute in self.attributes:
            value = attribute.value(attributes)
            if value is not None:
                self._maps[attribute.name].setdefault(value, (target, attributes))

    def probe(self, attributes: Attributes) -> Optional[Target]:
        """First compatible hit in priority order.

        A hit on a lower-priority attribute is rejected when both sides carry
        a stronger identifier and those identifiers differ (two chain stores
        sharing a name but not an NPI stay distinct).
        """
        for rank, attribute in enumerate(self.attributes):
            value = attribute.value(attributes)
            if value is None:
                continue
            hit = self._maps[attribute.name].get(value)
            if hit is None:
                continue
            target, indexed = hit
            if self._compatible(attributes, indexed, rank):
                return target
        return None

    def _compatible(self, candidate: Attributes, indexed: Attributes, rank: int) -> bool:
        for stronger in self.attributes[:rank]:
            mine = stronger.value(candidate)
            theirs = stronger.value(indexed)
            if mine is not None and theirs is not None and mine != theirs:
                return False
        return True


class EntityResolver:
    """Resolves the references of one entity kind against the backing store.

    Parameters:
        kind: Entity kind handled by this resolver
        storage: Backing store
        insert_chunk_size: Maximum rows per bulk insert call

    Example Usage:
        ```python
        context = ResolutionContext()
        for kind in RESOLUTION_ORDER:
            outcome = EntityResolver(kind, storage).resolve(records, context)
        pharmacy_id = context.lookup(EntityKind.PHARMACY, "npi:1234567890")
        ```
    """

    def __init__(self, kind: EntityKind, storage: StoragePort, insert_chunk_size: int = DEFAULT_INSERT_CHUNK_SIZE):
        if insert_chunk_size < 1:
            raise ValueError("insert_chunk_size must be positive")
        self.kind = kind
        self.storage = storage
        self.insert_chunk_size = insert_chunk_size

    def resolve(self, records: Sequence[TypedRecord], context: ResolutionContext) -> ResolutionOutcome:
        """Resolve every reference of this kind found in ``records``.

        Returns:
            ResolutionOutcome: counts and EntityCreationFailed errors

        Raises:
            StageFatalError: If the persisted entities cannot be read
        """
        outcome = ResolutionOutcome(kind=self.kind)
        candidates = extract_candidates(list(records), self.kind)
        outcome.candidates = len(candidates)
        if not candidates:
            logger.debug(f"No {self.kind.label} references in batch")
            return outcome

        cache = context.cache_for(self.kind)
        index = self._load_index()

        pending: list[_Pending] = []
        # strongest identifier first, so weaker sightings can merge into it
        for candidate in sorted(candidates, key=lambda c: key_rank(self.kind, c.attributes)):
            if candidate.key in cache:
                continue
            target = index.probe(candidate.attributes)
            if isinstance(target, _Pending):
                target.aliases.append(candidate.key)
            elif target is not None:
                cache.put(candidate.key, target)
                outcome.matched += 1
            else:
                scheduled = _Pending(candidate)
                pending.append(scheduled)
                index.add(candidate.attributes, scheduled)

        if pending:
            self._create(pending, context, outcome)

        logger.info(
            f"Resolved {self.kind.label}: {outcome.candidates} distinct, "
            f"{outcome.matched} existing, {outcome.created} created"
        )
        return outcome

    # ------------------------------------------------------------------------

    def _read_persisted(self) -> list[dict]:
        result = self.storage.bulk_read(self.kind.table, ["id", *KEY_COLUMNS[self.kind]])
        if result.is_failure():
            raise StageFatalError(
                f"Failed to read existing {self.kind.table}: {result.error}",
                kind=self.kind.label
            )
        return result.value or []

    def _load_index(self) -> _EntityIndex:
        index = _EntityIndex(self.kind)
        for row in self._read_persisted():
            index.add(row, str(row["id"]))
        return index

    def _insert_row(self, scheduled: _Pending, context: ResolutionContext) -> dict:
        row = dict(scheduled.candidate.attributes)
        for column, (kind, key) in scheduled.candidate.references.items():
            row[column] = context.lookup(kind, key)
        return row

    def _create(self, pending: list[_Pending], context: ResolutionContext, outcome: ResolutionOutcome) -> None:
        for start in range(0, len(pending), self.insert_chunk_size):
            chunk = pending[start:start + self.insert_chunk_size]
            rows = [self._insert_row(scheduled, context) for scheduled in chunk]
            result = self.storage.bulk_insert(self.kind.table, rows)

            if result.is_success():
                self._publish(chunk, result.value or [], context, outcome)
            elif result.error_type == "StorageConflictError":
                logger.warning(
                    f"Conflict inserting {len(chunk)} {self.kind.table}; "
                    "re-reading to pick up entities created concurrently"
                )
                self._recover_from_conflict(chunk, context, outcome)
            else:
                self._record_failure(len(chunk), result.error, outcome)

    def _recover_from_conflict(
        self,
        chunk: list[_Pending],
        context: ResolutionContext,
        outcome: ResolutionOutcome
    ) -> None:
        cache = context.cache_for(self.kind)
        index = self._load_index()
        still_missing: list[_Pending] = []
        for scheduled in chunk:
            target = index.probe(scheduled.candidate.attributes)
            if isinstance(target, str):
                for key in scheduled.keys:
                    cache.put(key, target)
                outcome.matched += 1
            else:
                still_missing.append(scheduled)

        if not still_missing:
            return
        rows = [self._insert_row(scheduled, context) for scheduled in still_missing]
        result = self.storage.bulk_insert(self.kind.table, rows)
        if result.is_success():
            self._publish(still_missing, result.value or [], context, outcome)
        else:
            self._record_failure(len(still_missing), result.error, outcome)

    def _publish(
        self,
        chunk: list[_Pending],
        returned_rows: list[dict],
        context: ResolutionContext,
        outcome: ResolutionOutcome
    ) -> None:
        cache = context.cache_for(self.kind)
        by_key = {scheduled.candidate.key: scheduled for scheduled in chunk}

        for row in returned_rows:
            entity_id = str(row["id"])
            returned_key = natural_key(self.kind, row)
            cache.put(returned_key, entity_id)
            outcome.created += 1
            scheduled = by_key.pop(returned_key, None)
            if scheduled is not None:
                for key in scheduled.keys:
                    cache.put(key, entity_id)

        if by_key:
            message = (
                f"{len(by_key)} created {self.kind.table} could not be mapped back "
                "to their source rows; references to them load as null"
            )
            logger.warning(message)
            outcome.errors.append(RowError(
                category=ErrorCategory.ENTITY_CREATION_FAILED,
                message=message,
                entity_kind=self.kind,
            ))

    def _record_failure(self, count: int, error: Optional[str], outcome: ResolutionOutcome) -> None:
        message = f"Failed to create {count} {self.kind.table}: {error}"
        logger.error(message)
        outcome.errors.append(RowError(
            category=ErrorCategory.ENTITY_CREATION_FAILED,
            message=message,
            entity_kind=self.kind,
        ))

"""
Relationship resolution: staged relationships -> canonical connections.

Two operations:
- fix_missing_relationships: fold staged relationship rows into the graph,
  resolving endpoint names through the EntityResolver. Rows run in a
  bounded thread pool and are independent of each other.
- create_obvious_relationships: infer low-weight connections between
  entities that are mentioned in the same episodes.

Connections are undirected and unique per pair_key. Staged connections
weigh the number of distinct episodes that support them, so replaying a
row whose processed flag was lost cannot inflate the weight.
"""

from __future__ import annotations

import logging
from collections import Counter, defaultdict
from concurrent.futures import Future, ThreadPoolExecutor, as_completed
from dataclasses import dataclass
from itertools import combinations

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, sessionmaker

from app.kg.entity_resolver import EntityResolver
from app.kg.errors import (
    EntityNotFound,
    InvalidInput,
    ResolutionConflict,
    RowProcessingError,
    StorageUnavailable,
    storage_errors,
)
from app.kg.models import (
    Connection,
    ConnectionEpisode,
    ConnectionOrigin,
    Entity,
    EntityMention,
    make_pair_key,
)
from app.kg.normalization import dedup_key
from app.kg.schemas import (
    ObviousRelationshipConfig,
    ResolutionResult,
    StagedKind,
    StagedRelationshipRecord,
)
from app.kg.staging import StagingStore

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RowOutcome:
    """Result of folding one staged relationship into the graph."""

    row_id: str
    connection_id: str
    created: bool
    source_name: str
    target_name: str


@dataclass(frozen=True)
class CoMentionCandidate:
    """Two entities mentioned in the same episodes."""

    source_entity_id: str
    target_entity_id: str
    shared_episodes: int
    confidence: float


class RelationshipResolver:
    """Create and update canonical connections from staged data."""

    def __init__(
        self,
        session_factory: sessionmaker[Session],
        staging: StagingStore,
        entity_resolver: EntityResolver,
        max_workers: int = 4,
        obvious_config: ObviousRelationshipConfig | None = None,
    ) -> None:
        self._session_factory = session_factory
        self._staging = staging
        self._entities = entity_resolver
        self.max_workers = max_workers
        self.obvious_config = obvious_config or ObviousRelationshipConfig()

    # ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
    # Staged relationships
    # ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━

    def fix_missing_relationships(
        self, batch_size: int, max_workers: int | None = None
    ) -> ResolutionResult:
        """
        Resolve one batch of unprocessed staged relationships.

        Each row resolves both endpoint names (creating entities as needed),
        upserts the connection, records both mentions and is then marked
        processed. Rows with an invalid name or a self-loop are counted in
        errors and stay unprocessed for a later run.

        Args:
            batch_size: Maximum number of staged rows to process
            max_workers: Worker threads for this batch (default: instance value)

        Returns:
            ResolutionResult with processed/created/skipped/errors counts

        Raises:
            InvalidInput: If batch_size is not positive
            StorageUnavailable: If the database fails mid-batch; rows already
                marked processed stay processed
        """
        if batch_size < 1:
            raise InvalidInput(f"batch_size must be positive (got {batch_size})")

        rows = self._staging.list_unprocessed(StagedKind.RELATIONSHIP, batch_size)
        result = ResolutionResult()
        if not rows:
            logger.info("No unprocessed staged relationships")
            return result

        workers = max(1, min(max_workers or self.max_workers, len(rows)))
        logger.info(
            f"Resolving {len(rows)} staged relationships with {workers} workers"
        )

        with ThreadPoolExecutor(
            max_workers=workers, thread_name_prefix="resolve-rel"
        ) as pool:
            futures: dict[Future[RowOutcome], StagedRelationshipRecord] = {
                pool.submit(self._process_row, row): row for row in rows
            }
            try:
                for future in as_completed(futures):
                    self._collect(future, futures[future], result)
            except StorageUnavailable:
                for pending in futures:
                    pending.cancel()
                logger.error(
                    f"Storage unavailable after {result.processed} rows; "
                    "aborting batch",
                    exc_info=True,
                )
                raise

        logger.info(
            f"Relationship batch done: processed={result.processed} "
            f"created={result.created} skipped={result.skipped} "
            f"errors={result.errors}"
        )
        return result

    @staticmethod
    def _collect(
        future: Future[RowOutcome],
        row: StagedRelationshipRecord,
        result: ResolutionResult,
    ) -> None:
        try:
            outcome = future.result()
        except RowProcessingError as e:
            result.errors += 1
            result.details.append(
                f"Error: {row.source_name} -> {row.target_name}: {e.reason}"
            )
            logger.warning(f"Staged relationship left unprocessed: {e}")
            return

        result.processed += 1
        if outcome.created:
            result.created += 1
            result.details.append(
                f"Created: {outcome.source_name} -> {outcome.target_name}"
            )
        else:
            result.skipped += 1
            result.details.append(
                f"Exists: {outcome.source_name} -> {outcome.target_name}"
            )
            logger.info(
                f"Connection {outcome.connection_id} already existed for row "
                f"{outcome.row_id}"
            )

    def _process_row(self, row: StagedRelationshipRecord) -> RowOutcome:
        """Fold one staged relationship into the graph, then mark it processed."""
        source_key = dedup_key(row.source_name)
        target_key = dedup_key(row.target_name)
        if source_key and source_key == target_key:
            raise RowProcessingError(
                row.id, f"self-loop: '{row.source_name}' and '{row.target_name}'"
            )

        try:
            try:
                source_id, target_id, connection_id, created = self._fold_row(row)
            except EntityNotFound as e:
                # A cached endpoint was deleted elsewhere and has been evicted
                logger.info(f"Staged relationship {row.id}: {e}; resolving again")
                source_id, target_id, connection_id, created = self._fold_row(row)
            self._entities.record_mention(source_id, row.episode_id)
            self._entities.record_mention(target_id, row.episode_id)
        except (InvalidInput, ResolutionConflict, EntityNotFound) as e:
            raise RowProcessingError(row.id, str(e)) from e

        self._staging.mark_processed(StagedKind.RELATIONSHIP, [row.id])

        return RowOutcome(
            row_id=row.id,
            connection_id=connection_id,
            created=created,
            source_name=row.source_name,
            target_name=row.target_name,
        )

    def _fold_row(self, row: StagedRelationshipRecord) -> tuple[str, str, str, bool]:
        """Resolve both endpoints and upsert their connection."""
        source_id = self._entities.resolve(row.source_name)
        target_id = self._entities.resolve(row.target_name)
        if source_id == target_id:
            raise RowProcessingError(row.id, f"self-loop on entity {source_id}")
        connection_id, created = self._upsert_staged_connection(
            source_id, target_id, row.episode_id, row.description
        )
        return source_id, target_id, connection_id, created

    def _upsert_staged_connection(
        self,
        source_id: str,
        target_id: str,
        episode_id: str,
        description: str | None,
    ) -> tuple[str, bool]:
        """
        Create or confirm the connection for a pair and link the episode.

        A lost insert race is retried once as an update of the winner's row.

        Returns:
            (connection_id, created)

        Raises:
            EntityNotFound: If an endpoint no longer exists; its cached key
                is evicted first
            ResolutionConflict: If the pair kept conflicting with a
                concurrent writer
        """
        pair_key = make_pair_key(source_id, target_id)
        for attempt in range(2):
            try:
                with (
                    storage_errors("connection upsert"),
                    self._session_factory.begin() as session,
                ):
                    return self._write_staged_connection(
                        session, pair_key, source_id, target_id, episode_id, description
                    )
            except IntegrityError:
                missing = self._entities.evict_missing([source_id, target_id])
                if missing:
                    raise EntityNotFound(
                        f"Connection endpoint(s) {', '.join(missing)} no longer exist"
                    ) from None
                if attempt:
                    break
                logger.info(f"Connection {pair_key} written concurrently; retrying")
        raise ResolutionConflict(
            pair_key,
            f"Connection {pair_key} kept conflicting with a concurrent writer",
        )

    @staticmethod
    def _write_staged_connection(
        session: Session,
        pair_key: str,
        source_id: str,
        target_id: str,
        episode_id: str,
        description: str | None,
    ) -> tuple[str, bool]:
        connection = session.scalar(
            select(Connection).where(Connection.pair_key == pair_key)
        )
        created = connection is None
        if connection is None:
            connection = Connection(
                source_entity_id=source_id,
                target_entity_id=target_id,
                pair_key=pair_key,
                weight=0.0,
                description=description,
                origin=ConnectionOrigin.STAGED.value,
            )
            session.add(connection)
            session.flush()
        else:
            if connection.origin == ConnectionOrigin.INFERRED.value:
                connection.origin = ConnectionOrigin.STAGED.value
            if description and not connection.description:
                connection.description = description

        if session.get(ConnectionEpisode, (connection.id, episode_id)) is None:
            session.add(ConnectionEpisode(connection_id=connection.id, episode_id=episode_id))
            session.flush()

        # Manual connections keep their curated weight
        if connection.origin == ConnectionOrigin.STAGED.value:
            supporting = session.scalar(
                select(func.count())
                .select_from(ConnectionEpisode)
                .where(ConnectionEpisode.connection_id == connection.id)
            )
            connection.weight = float(supporting or 1)

        return connection.id, created

    # ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
    # Co-mention inference
    # ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━

    def find_co_mention_candidates(self) -> list[CoMentionCandidate]:
        """
        Score entity pairs by shared episode mentions.

        Episodes mentioning more than max_entities_per_episode entities are
        ignored entirely. Candidates are sorted by confidence, then shared
        episode count, highest first.
        """
        config = self.obvious_config
        with storage_errors("mention scan"), self._session_factory() as session:
            mentions = session.execute(
                select(EntityMention.entity_id, EntityMention.episode_id)
            ).all()

        by_episode: dict[str, set[str]] = defaultdict(set)
        for entity_id, episode_id in mentions:
            by_episode[episode_id].add(entity_id)

        episodes_per_entity: Counter[str] = Counter()
        shared: Counter[tuple[str, str]] = Counter()
        for entity_ids in by_episode.values():
            if len(entity_ids) > config.max_entities_per_episode:
                continue
            episodes_per_entity.update(entity_ids)
            for pair in combinations(sorted(entity_ids), 2):
                shared[pair] += 1

        candidates = []
        for (source_id, target_id), count in shared.items():
            if count < config.min_shared_episodes:
                continue
            confidence = count / min(
                episodes_per_entity[source_id], episodes_per_entity[target_id]
            )
            if confidence < config.min_confidence:
                continue
            candidates.append(
                CoMentionCandidate(source_id, target_id, count, confidence)
            )

        candidates.sort(
            key=lambda c: (
                -c.confidence,
                -c.shared_episodes,
                c.source_entity_id,
                c.target_entity_id,
            )
        )
        return candidates

    def create_obvious_relationships(self, batch_size: int) -> ResolutionResult:
        """
        Connect co-mentioned entities that are not connected yet.

        Existing pairs are skipped untouched, so a second run creates
        nothing and never re-weights.

        Args:
            batch_size: Maximum number of new connections to create

        Returns:
            ResolutionResult; processed counts candidate pairs evaluated
        """
        if batch_size < 1:
            raise InvalidInput(f"batch_size must be positive (got {batch_size})")

        candidates = self.find_co_mention_candidates()
        result = ResolutionResult()
        if not candidates:
            logger.info("No co-mention candidates found")
            return result

        with storage_errors("connection scan"), self._session_factory() as session:
            existing = set(session.scalars(select(Connection.pair_key)))

        for candidate in candidates:
            if result.created >= batch_size:
                break
            result.processed += 1
            pair_key = make_pair_key(
                candidate.source_entity_id, candidate.target_entity_id
            )
            if pair_key in existing or not self._insert_inferred(candidate, pair_key):
                result.skipped += 1
                continue
            existing.add(pair_key)
            result.created += 1
            result.details.append(
                f"Inferred: {candidate.source_entity_id} <-> "
                f"{candidate.target_entity_id} "
                f"(shared={candidate.shared_episodes}, "
                f"confidence={candidate.confidence:.2f})"
            )

        logger.info(
            f"Co-mention inference done: evaluated={result.processed} "
            f"created={result.created} skipped={result.skipped}"
        )
        return result

    def _insert_inferred(self, candidate: CoMentionCandidate, pair_key: str) -> bool:
        try:
            with storage_errors("inferred insert"), self._session_factory.begin() as session:
                session.add(
                    Connection(
                        source_entity_id=candidate.source_entity_id,
                        target_entity_id=candidate.target_entity_id,
                        pair_key=pair_key,
                        weight=self.obvious_config.weight,
                        origin=ConnectionOrigin.INFERRED.value,
                    )
                )
        except IntegrityError:
            logger.info(f"Connection {pair_key} created concurrently; skipping")
            return False
        return True

    # ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
    # Manual curation
    # ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━

    def create_manual_connection(
        self, source_id: str, target_id: str, description: str | None = None
    ) -> tuple[str, bool]:
        """
        Create a curated connection between two existing entities.

        Returns:
            (connection_id, created); created is False if the pair existed

        Raises:
            InvalidInput: On a self-loop
            EntityNotFound: If either entity does not exist
        """
        if source_id == target_id:
            raise InvalidInput("Cannot connect an entity to itself")

        pair_key = make_pair_key(source_id, target_id)
        with storage_errors("manual connection"):
            with self._session_factory() as session:
                found = set(
                    session.scalars(
                        select(Entity.id).where(Entity.id.in_([source_id, target_id]))
                    )
                )
                if len(found) != 2:
                    raise EntityNotFound("One or both entities not found")
                existing = session.scalar(
                    select(Connection.id).where(Connection.pair_key == pair_key)
                )
            if existing is not None:
                return existing, False
            try:
                with self._session_factory.begin() as session:
                    connection = Connection(
                        source_entity_id=source_id,
                        target_entity_id=target_id,
                        pair_key=pair_key,
                        weight=1.0,
                        description=description,
                        origin=ConnectionOrigin.MANUAL.value,
                    )
                    session.add(connection)
                    session.flush()
                    connection_id = connection.id
            except IntegrityError as e:
                with self._session_factory() as session:
                    existing = session.scalar(
                        select(Connection.id).where(Connection.pair_key == pair_key)
                    )
                if existing is None:
                    raise EntityNotFound("One or both entities not found") from e
                return existing, False

        logger.info(f"Created manual connection {connection_id} ({pair_key})")
        return connection_id, True

    def delete_connection(self, connection_id: str) -> bool:
        """Delete a connection; returns True if it existed."""
        with storage_errors("connection delete"), self._session_factory.begin() as session:
            connection = session.get(Connection, connection_id)
            if connection is None:
                return False
            session.delete(connection)

        logger.info(f"Deleted connection {connection_id}")
        return True

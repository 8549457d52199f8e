"""Narrative Market Engine - directory, ledger and analytics wired together."""

from __future__ import annotations

import json
import logging
import math
import sqlite3
from datetime import datetime
from pathlib import Path
from typing import Callable

from narrative_market.analytics import MarketAnalyticsEngine
from narrative_market.embedding import (
    EmbeddingProvider,
    create_backend,
    serialize_vector,
)
from narrative_market.errors import InvalidInput
from narrative_market.ledger import (
    ActivityLedger,
    SqliteActivityStore,
    from_db_time,
    to_db_time,
)
from narrative_market.models import (
    Embedding,
    EngineConfig,
    Narrative,
    TrendingData,
    utc_now,
)
from narrative_market.queries import (
    build_narrative_by_id_query,
    build_narratives_query,
    build_vec_table_ddl,
)
from narrative_market.similarity import cosine_similarity, find_similar
from narrative_market.staking import StakingService

logger = logging.getLogger(__name__)


class NarrativeMarketEngine:
    """Engine for narrative records, staking activity and market analytics."""

    def __init__(
        self,
        config: EngineConfig,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.config = config
        self.clock = clock
        self.db = sqlite3.connect(config.db_path)
        self.db.row_factory = sqlite3.Row
        self._load_sqlite_vec()
        self._init_schema()
        self._init_embedding_backend()

        self.ledger = ActivityLedger(SqliteActivityStore(self.db), clock=clock)
        self.analytics = MarketAnalyticsEngine(self.ledger, config.scoring)
        self.staking = StakingService(self.ledger, self.analytics)

    def _load_sqlite_vec(self) -> None:
        """Load the sqlite-vec extension."""
        import sqlite_vec

        # Enable extension loading (disabled by default for security)
        self.db.enable_load_extension(True)
        sqlite_vec.load(self.db)
        self.db.enable_load_extension(False)

    def _init_schema(self) -> None:
        """Initialize database schema."""
        schema_path = Path(__file__).parent / "schema.sql"
        with open(schema_path) as f:
            schema = f.read()
        self.db.executescript(schema)
        self.db.execute(build_vec_table_ddl(self.config.vector_dimensions))
        self.db.commit()

    def _init_embedding_backend(self) -> None:
        """Initialize the embedding provider."""
        backend = create_backend(
            self.config.embedding_backend,
            dimensions=self.config.vector_dimensions,
            embedding_model=self.config.embedding_model,
            openai_model=self.config.openai_model,
            timeout=self.config.embedding_timeout,
        )
        self.embedder = EmbeddingProvider(
            backend,
            dimensions=self.config.vector_dimensions,
            max_text_length=self.config.max_text_length,
        )

    def close(self) -> None:
        """Close database connection."""
        self.db.close()

    def __enter__(self) -> NarrativeMarketEngine:
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.close()

    # -------------------------------------------------------------------------
    # Narrative Operations
    # -------------------------------------------------------------------------

    def create_narrative(
        self,
        name: str,
        description: str,
        content: str,
        creator: str,
        tags: list[str] | None = None,
        modality: str = "text",
        embedding: Embedding | None = None,
    ) -> Narrative:
        """Create a narrative and store its embedding.

        Args:
            name: Display name
            description: Short description
            content: Full narrative text
            creator: Creator's wallet address
            tags: Free-form tags
            modality: Content modality ('text', 'image', ...)
            embedding: Precomputed embedding of the narrative text; generated
                when omitted

        Returns:
            The stored Narrative
        """
        if not name or not name.strip():
            raise InvalidInput("Narrative name is required")
        if not creator:
            raise InvalidInput("Creator address is required")

        text = f"{name} {description} {content}"
        if embedding is None:
            embedding = self.embedder.generate(text)
        self._check_dimensions(embedding)

        now = to_db_time(self.clock())
        # Record and vector are written together or not at all
        with self.db:
            cursor = self.db.execute(
                """
                INSERT INTO narratives
                    (name, description, content, creator, tags, modality,
                     embedding_model, created_at, updated_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    name,
                    description,
                    content,
                    creator,
                    json.dumps(tags or []),
                    modality,
                    embedding.model,
                    now,
                    now,
                ),
            )
            narrative_id = cursor.lastrowid

            self.db.execute(
                "INSERT INTO narrative_vec (rowid, embedding) VALUES (?, ?)",
                (narrative_id, serialize_vector(embedding.vector)),
            )

        logger.info(f"Created narrative {narrative_id}: {name}")
        return self.get_narrative(narrative_id)

    def _check_dimensions(self, embedding: Embedding) -> None:
        if len(embedding.vector) != self.config.vector_dimensions:
            raise InvalidInput(
                f"Embedding must be {self.config.vector_dimensions}-dimensional, "
                f"got {len(embedding.vector)}"
            )
        if not all(math.isfinite(x) for x in embedding.vector):
            raise InvalidInput("Embedding values must be finite")

    def get_narrative(self, narrative_id: int) -> Narrative | None:
        """Get a narrative by id."""
        row = self.db.execute(
            build_narrative_by_id_query(), {"id": narrative_id}
        ).fetchone()
        if row is None:
            return None
        return self._row_to_narrative(row)

    def list_narratives(
        self,
        tags: list[str] | None = None,
        modality: str | None = None,
        creator: str | None = None,
        created_after: datetime | None = None,
        created_before: datetime | None = None,
        limit: int | None = None,
        offset: int = 0,
    ) -> list[Narrative]:
        """List narratives, newest first, optionally filtered.

        Args:
            tags: Keep narratives carrying any of these tags
            modality: Filter by modality
            creator: Filter by creator address (case-insensitive)
            created_after: Inclusive lower bound on creation time
            created_before: Inclusive upper bound on creation time
            limit: Max narratives to return
            offset: Narratives to skip

        Returns:
            List of Narrative objects
        """
        params = {
            "modality": modality,
            "creator": creator,
            "created_after": to_db_time(created_after) if created_after else None,
            "created_before": to_db_time(created_before) if created_before else None,
            "limit": -1 if limit is None else limit,
            "offset": offset,
        }
        for i, tag in enumerate(tags or []):
            params[f"tag{i}"] = tag

        rows = self.db.execute(
            build_narratives_query(tags, with_pagination=True), params
        ).fetchall()
        return [self._row_to_narrative(row) for row in rows]

    def update_narrative(
        self,
        narrative_id: int,
        name: str | None = None,
        description: str | None = None,
        content: str | None = None,
        tags: list[str] | None = None,
    ) -> Narrative:
        """Update a narrative's fields.

        The embedding is regenerated only when the embedded text changes.
        """
        narrative = self.get_narrative(narrative_id)
        if narrative is None:
            raise InvalidInput(f"Narrative not found: {narrative_id}")

        old_text = narrative.embedded_text
        if name is not None:
            narrative.name = name
        if description is not None:
            narrative.description = description
        if content is not None:
            narrative.content = content
        if tags is not None:
            narrative.tags = tags

        embedding = None
        embedding_model = narrative.embedding_model
        if narrative.embedded_text != old_text:
            embedding = self.embedder.generate(narrative.embedded_text)
            embedding_model = embedding.model

        with self.db:
            self.db.execute(
                """
                UPDATE narratives
                SET name = ?, description = ?, content = ?, tags = ?,
                    embedding_model = ?, updated_at = ?
                WHERE id = ?
                """,
                (
                    narrative.name,
                    narrative.description,
                    narrative.content,
                    json.dumps(narrative.tags),
                    embedding_model,
                    to_db_time(self.clock()),
                    narrative_id,
                ),
            )
            if embedding is not None:
                payload = serialize_vector(embedding.vector)
                self.db.execute(
                    "DELETE FROM narrative_vec WHERE rowid = ?", (narrative_id,)
                )
                self.db.execute(
                    "INSERT INTO narrative_vec (rowid, embedding) VALUES (?, ?)",
                    (narrative_id, payload),
                )
        return self.get_narrative(narrative_id)

    def _row_to_narrative(self, row: sqlite3.Row) -> Narrative:
        return Narrative(
            id=row["id"],
            name=row["name"],
            description=row["description"],
            content=row["content"],
            creator=row["creator"],
            tags=json.loads(row["tags"]),
            modality=row["modality"],
            embedding=json.loads(row["embedding"]),
            embedding_model=row["embedding_model"],
            created_at=from_db_time(row["created_at"]),
            updated_at=from_db_time(row["updated_at"]),
        )

    # -------------------------------------------------------------------------
    # Similarity Operations
    # -------------------------------------------------------------------------

    def find_similar_narratives(
        self,
        query_text: str,
        threshold: float = 0.7,
        limit: int = 20,
        tags: list[str] | None = None,
        query_embedding: Embedding | None = None,
    ) -> list[tuple[Narrative, float]]:
        """Find narratives semantically similar to a query text.

        Args:
            query_text: Text to compare against
            threshold: Minimum cosine similarity (0..1)
            limit: Max results
            tags: Only search narratives carrying any of these tags
            query_embedding: Precomputed embedding of query_text

        Returns:
            (narrative, similarity) pairs, most similar first
        """
        if not 0 <= threshold <= 1:
            raise InvalidInput("Threshold must be between 0 and 1")

        if query_embedding is None:
            query_embedding = self.embedder.generate(query_text)

        narratives = {n.id: n for n in self.list_narratives(tags=tags)}
        results = find_similar(
            query_embedding.vector,
            [(nid, n.embedding) for nid, n in narratives.items()],
            threshold=threshold,
            limit=limit,
        )
        return [(narratives[r.key], r.similarity) for r in results]

    def are_narratives_similar(
        self, narrative_id_1: int, narrative_id_2: int, threshold: float = 0.85
    ) -> bool:
        """Compare two stored narratives' embeddings."""
        first = self.get_narrative(narrative_id_1)
        second = self.get_narrative(narrative_id_2)
        if first is None or second is None:
            raise InvalidInput("One or both narratives not found")
        return cosine_similarity(first.embedding, second.embedding) >= threshold

    # -------------------------------------------------------------------------
    # Market Operations
    # -------------------------------------------------------------------------

    def trending_narratives(
        self, limit: int = 20, now: datetime | None = None
    ) -> list[tuple[Narrative, TrendingData]]:
        """Trending analytics joined with directory records.

        Activity on narrative ids the directory does not hold is skipped.
        """
        results = []
        if limit <= 0:
            return results
        for trend in self.analytics.trending_narratives(
            limit=len(self.ledger.narrative_ids()), now=now
        ):
            narrative = self.get_narrative(trend.metric.narrative_id)
            if narrative is not None:
                results.append((narrative, trend))
            if len(results) >= limit:
                break
        return results

"""SQL query builders for Narrative Market."""


def build_activity_table_ddl() -> str:
    """Build DDL for the append-only staking activity table."""
    return """
    CREATE TABLE IF NOT EXISTS staking_activity (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        narrative_id INTEGER NOT NULL,
        staker_address TEXT NOT NULL,
        amount REAL NOT NULL CHECK (amount > 0),
        action TEXT NOT NULL CHECK (action IN ('stake', 'unstake')),
        timestamp TEXT NOT NULL
    );
    CREATE INDEX IF NOT EXISTS idx_staking_activity_narrative
        ON staking_activity (narrative_id);
    """


def build_activity_query(narrative_id: int | None = None) -> str:
    """Build query for activity records in append order."""
    query = """
    SELECT narrative_id, staker_address, amount, action, timestamp
    FROM staking_activity
    """
    if narrative_id is not None:
        query += "WHERE narrative_id = :narrative_id\n"
    return query + "ORDER BY id"


def build_activity_narratives_query() -> str:
    """Build query for narrative ids in order of first activity."""
    return """
    SELECT narrative_id
    FROM staking_activity
    GROUP BY narrative_id
    ORDER BY MIN(id)
    """


def build_vec_table_ddl(dimensions: int) -> str:
    """Build DDL for creating the narrative vector table."""
    return f"""
    CREATE VIRTUAL TABLE IF NOT EXISTS narrative_vec
    USING vec0(embedding float[{dimensions}])
    """


def build_narratives_query(
    tags: list[str] | None = None,
    with_pagination: bool = False,
) -> str:
    """Build query for narratives with their embeddings, newest first.

    Tag filtering matches narratives carrying any of the given tags. Tags
    are stored as a JSON array, so the match goes through json_each.
    """
    query = """
    SELECT n.id, n.name, n.description, n.content, n.creator, n.tags,
           n.modality, n.embedding_model, n.created_at, n.updated_at,
           vec_to_json(v.embedding) AS embedding
    FROM narratives n
    JOIN narrative_vec v ON v.rowid = n.id
    WHERE (:modality IS NULL OR n.modality = :modality)
      AND (:creator IS NULL OR lower(n.creator) = lower(:creator))
      AND (:created_after IS NULL OR n.created_at >= :created_after)
      AND (:created_before IS NULL OR n.created_at <= :created_before)
    """
    if tags:
        placeholders = ", ".join(f":tag{i}" for i in range(len(tags)))
        query += f"""
      AND EXISTS (
          SELECT 1 FROM json_each(n.tags) t WHERE t.value IN ({placeholders})
      )
    """
    query += "ORDER BY n.created_at DESC, n.id DESC\n"
    if with_pagination:
        query += "LIMIT :limit OFFSET :offset"
    return query


def build_narrative_by_id_query() -> str:
    """Build query for a single narrative with its embedding."""
    return """
    SELECT n.id, n.name, n.description, n.content, n.creator, n.tags,
           n.modality, n.embedding_model, n.created_at, n.updated_at,
           vec_to_json(v.embedding) AS embedding
    FROM narratives n
    JOIN narrative_vec v ON v.rowid = n.id
    WHERE n.id = :id
    """

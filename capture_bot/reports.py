"""
Schema bootstrap and saved report queries.

These run outside the bot process as one-off commands, through a plain
SQLAlchemy engine the way the pipeline scripts do.
"""

import logging
from pathlib import Path
from typing import Any, Dict, List, Optional

import sqlalchemy as sa
from sqlalchemy.engine import Engine

logger = logging.getLogger(__name__)

DDL_PATH = Path(__file__).parent / "ddl" / "capture_tables.sql"

CODE_BLOCK_PATTERN = "%```%"

CODE_BLOCKS_SQL = sa.text("""
    SELECT
        m.message_id,
        c.channel_name,
        t.title AS thread_title,
        m.author_id,
        m.content,
        m.created_at,
        m.urls,
        m.media_urls,
        m.embed_urls
    FROM messages m
    LEFT JOIN channels c ON m.channel_id = c.id
    LEFT JOIN threads t ON m.thread_id = t.id
    WHERE m.content LIKE :pattern
    ORDER BY m.created_at DESC
""")

MOST_REACTED_SQL = sa.text("""
    WITH reaction_counts AS (
        SELECT
            m.id,
            m.message_id,
            c.channel_name,
            t.title AS thread_title,
            m.author_id,
            m.content,
            m.created_at,
            m.reactions,
            SUM(CAST(r.value AS INTEGER)) AS total_reactions,
            STRING_AGG(r.key || ': ' || r.value, ', ') AS reaction_list
        FROM messages m
        LEFT JOIN channels c ON m.channel_id = c.id
        LEFT JOIN threads t ON m.thread_id = t.id,
        jsonb_each_text(m.reactions) AS r(key, value)
        WHERE m.reactions != '{}'::jsonb
          AND m.created_at >= NOW() - make_interval(hours => :hours)
        GROUP BY m.id, m.message_id, c.channel_name, t.title,
                 m.author_id, m.content, m.created_at, m.reactions
    )
    SELECT
        channel_name,
        message_id,
        thread_title,
        author_id,
        content,
        created_at,
        total_reactions,
        reaction_list,
        reactions AS raw_reactions
    FROM reaction_counts
    ORDER BY channel_name, total_reactions DESC, created_at DESC
""")


def sqlalchemy_url(database_url: str) -> str:
    """Point a plain postgres url at the psycopg 3 driver."""
    for prefix in ("postgresql+psycopg2://", "postgresql://", "postgres://"):
        if database_url.startswith(prefix):
            return database_url.replace(prefix, "postgresql+psycopg://", 1)
    return database_url


def create_report_engine(database_url: str, password: Optional[str] = None) -> Engine:
    connect_args = {"password": password} if password else {}
    return sa.create_engine(sqlalchemy_url(database_url), connect_args=connect_args)


def split_statements(ddl: str) -> List[str]:
    """Split a DDL script into statements, dropping comment-only chunks."""
    statements = []
    for chunk in ddl.split(";"):
        lines = [line for line in chunk.splitlines() if not line.strip().startswith("--")]
        statement = "\n".join(lines).strip()
        if statement:
            statements.append(statement)
    return statements


def apply_schema(engine: Engine, ddl_path: Path = DDL_PATH) -> int:
    """Drop and recreate the capture tables. Returns the statement count."""
    statements = split_statements(ddl_path.read_text(encoding="utf-8"))
    with engine.begin() as conn:
        for statement in statements:
            conn.execute(sa.text(statement))
    logger.info(f"Executed {len(statements)} DDL statements from {ddl_path}")
    return len(statements)


def find_code_block_messages(engine: Engine) -> List[Dict[str, Any]]:
    with engine.connect() as conn:
        result = conn.execute(CODE_BLOCKS_SQL, {"pattern": CODE_BLOCK_PATTERN})
        return [dict(row) for row in result.mappings().all()]


def most_reacted_messages(engine: Engine, hours: int = 24) -> List[Dict[str, Any]]:
    with engine.connect() as conn:
        result = conn.execute(MOST_REACTED_SQL, {"hours": hours})
        return [dict(row) for row in result.mappings().all()]

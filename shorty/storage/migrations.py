"""
Versioned schema migrations for the PostgreSQL backend.

Each entry is (version, description, statements). Applied versions are
recorded in `schema_migrations`; `migrate()` runs the missing ones in order,
each inside its own transaction.
"""

import logging
from typing import List, Sequence, Tuple

log = logging.getLogger("shorty.storage")

Migration = Tuple[int, str, Sequence[str]]

MIGRATIONS: List[Migration] = [
    (
        1,
        "create urls table",
        (
            """
            CREATE TABLE IF NOT EXISTS urls (
                sequence_id  BIGSERIAL PRIMARY KEY,
                short_url    VARCHAR(32) NOT NULL,
                original_url TEXT NOT NULL,
                user_id      BIGINT NOT NULL DEFAULT 0,
                deleted      BOOLEAN NOT NULL DEFAULT FALSE,
                created_at   TIMESTAMPTZ NOT NULL DEFAULT NOW(),
                CONSTRAINT urls_short_url_key UNIQUE (short_url)
            )
            """,
            "CREATE INDEX IF NOT EXISTS idx_urls_user_id ON urls (user_id)",
        ),
    ),
    (
        2,
        "one active code per long url",
        (
            """
            CREATE UNIQUE INDEX IF NOT EXISTS ux_urls_original_url_active
                ON urls (original_url) WHERE NOT deleted
            """,
        ),
    ),
]

_CREATE_VERSIONS = """
CREATE TABLE IF NOT EXISTS schema_migrations (
    version    INTEGER PRIMARY KEY,
    applied_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
)
"""


def migrate(con, migrations: Sequence[Migration] = MIGRATIONS) -> int:
    """Apply pending migrations on an open psycopg connection.

    Returns the number of migrations applied.
    """
    with con.transaction(), con.cursor() as cur:
        cur.execute(_CREATE_VERSIONS)
        cur.execute("SELECT COALESCE(MAX(version), 0) FROM schema_migrations")
        row = cur.fetchone()
        current = int(row[0]) if row else 0

    applied = 0
    for version, description, statements in sorted(migrations, key=lambda m: m[0]):
        if version <= current:
            continue
        log.info("applying migration %d: %s", version, description)
        with con.transaction(), con.cursor() as cur:
            for statement in statements:
                cur.execute(statement)
            cur.execute("INSERT INTO schema_migrations (version) VALUES (%s)", (version,))
        applied += 1
    return applied

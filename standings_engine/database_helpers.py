from __future__ import annotations

import os
from dataclasses import dataclass

import psycopg2


# -------------------------
# Config
# -------------------------

@dataclass(frozen=True)
class DatabaseConfig:
    host: str = "db"
    port: int = 5432
    dbname: str = "standings"
    user: str = "postgres"
    password: str = "postgres"

    @classmethod
    def from_env(cls) -> DatabaseConfig:
        """
        Read the POSTGRES_* environment variables, falling back to the defaults above.
        """
        return cls(
            host=os.getenv("POSTGRES_HOST", cls.host),
            port=int(os.getenv("POSTGRES_PORT", str(cls.port))),
            dbname=os.getenv("POSTGRES_DB", cls.dbname),
            user=os.getenv("POSTGRES_USER", cls.user),
            password=os.getenv("POSTGRES_PASSWORD", cls.password),
        )


PLACEMENTS_TABLE_DDL = """
    CREATE TABLE IF NOT EXISTS placement_histograms (
        player   TEXT    NOT NULL,
        rank     INTEGER NOT NULL,
        count    BIGINT  NOT NULL,
        outcomes BIGINT  NOT NULL,
        PRIMARY KEY (player, rank)
    )
"""


# -------------------------
# Helpers
# -------------------------


def get_database_connection(config: DatabaseConfig | None = None):
    """
    Get a connection to the PostgreSQL database, configured from the environment unless a config is given.
    """
    config = config or DatabaseConfig.from_env()
    return psycopg2.connect(
        host=config.host,
        port=config.port,
        dbname=config.dbname,
        user=config.user,
        password=config.password,
    )


def ensure_placements_table(cur) -> None:
    cur.execute(PLACEMENTS_TABLE_DDL)

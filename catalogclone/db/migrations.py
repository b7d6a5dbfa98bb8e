from __future__ import annotations

from dataclasses import dataclass
from typing import Callable

from sqlalchemy import Connection, Engine, inspect, text


@dataclass(frozen=True)
class MigrationStep:
    version: int
    name: str
    apply: Callable[[Connection], None]


def _ensure_schema_migrations_table(conn: Connection) -> None:
    conn.execute(
        text(
            """
            CREATE TABLE IF NOT EXISTS schema_migrations (
                version INTEGER PRIMARY KEY,
                name VARCHAR(255) NOT NULL,
                applied_at DATETIME NOT NULL DEFAULT CURRENT_TIMESTAMP
            )
            """
        )
    )


def _table_exists(conn: Connection, table_name: str) -> bool:
    inspector = inspect(conn)
    return inspector.has_table(table_name)


def _column_exists(conn: Connection, table_name: str, column_name: str) -> bool:
    if not _table_exists(conn, table_name):
        return False

    if conn.engine.dialect.name == "sqlite":
        rows = conn.execute(text(f"PRAGMA table_info('{table_name}')")).mappings().all()
        return any(str(row["name"]) == column_name for row in rows)

    inspector = inspect(conn)
    return any(col["name"] == column_name for col in inspector.get_columns(table_name))


def _index_exists(conn: Connection, table_name: str, index_name: str) -> bool:
    if not _table_exists(conn, table_name):
        return False

    if conn.engine.dialect.name == "sqlite":
        rows = conn.execute(text(f"PRAGMA index_list('{table_name}')")).mappings().all()
        return any(str(row["name"]) == index_name for row in rows)

    inspector = inspect(conn)
    return any(index.get("name") == index_name for index in inspector.get_indexes(table_name))


def _migration_0001_baseline(_conn: Connection) -> None:
    return


def _migration_0002_tiered_price_cache(conn: Connection) -> None:
    if not _table_exists(conn, "products"):
        return

    if not _column_exists(conn, "products", "min_tiered_price"):
        conn.execute(text("ALTER TABLE products ADD COLUMN min_tiered_price NUMERIC(10, 2)"))

    if not _column_exists(conn, "products", "max_tiered_price"):
        conn.execute(text("ALTER TABLE products ADD COLUMN max_tiered_price NUMERIC(10, 2)"))


def _migration_0003_clone_job_deadline(conn: Connection) -> None:
    if not _table_exists(conn, "clone_jobs"):
        return

    if not _column_exists(conn, "clone_jobs", "deadline_at"):
        conn.execute(text("ALTER TABLE clone_jobs ADD COLUMN deadline_at DATETIME"))


def _migration_0004_clone_batches_queue(conn: Connection) -> None:
    conn.execute(
        text(
            """
            CREATE TABLE IF NOT EXISTS clone_batches (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                job_id VARCHAR(36) NOT NULL REFERENCES clone_jobs(id) ON DELETE CASCADE,
                source_account_id VARCHAR(36) NOT NULL,
                target_account_id VARCHAR(36) NOT NULL,
                batch_offset INTEGER NOT NULL,
                batch_limit INTEGER NOT NULL,
                status VARCHAR(9) NOT NULL DEFAULT 'pending',
                processed INTEGER NOT NULL DEFAULT 0,
                errors INTEGER NOT NULL DEFAULT 0,
                has_more BOOLEAN NOT NULL DEFAULT 0,
                error_message TEXT,
                created_at DATETIME NOT NULL DEFAULT CURRENT_TIMESTAMP,
                started_at DATETIME,
                finished_at DATETIME,
                CONSTRAINT uq_clone_batches_job_offset UNIQUE (job_id, batch_offset)
            )
            """
        )
    )

    if not _index_exists(conn, "clone_batches", "ix_clone_batches_status_id"):
        conn.execute(text("CREATE INDEX ix_clone_batches_status_id ON clone_batches (status, id)"))

    if not _index_exists(conn, "clone_batches", "ix_clone_batches_job_status"):
        conn.execute(text("CREATE INDEX ix_clone_batches_job_status ON clone_batches (job_id, status)"))


def _migration_0005_clone_listing_indexes(conn: Connection) -> None:
    if _table_exists(conn, "clone_jobs") and not _index_exists(conn, "clone_jobs", "ix_clone_jobs_created_id"):
        conn.execute(text("CREATE INDEX ix_clone_jobs_created_id ON clone_jobs (created_at, id)"))

    if _table_exists(conn, "products") and not _index_exists(conn, "products", "ix_products_account_created_id"):
        conn.execute(
            text("CREATE INDEX ix_products_account_created_id ON products (account_id, created_at, id)")
        )


def _migration_0006_clone_items(conn: Connection) -> None:
    conn.execute(
        text(
            """
            CREATE TABLE IF NOT EXISTS clone_items (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                job_id VARCHAR(36) NOT NULL REFERENCES clone_jobs(id) ON DELETE CASCADE,
                source_product_id VARCHAR(36) NOT NULL,
                target_product_id VARCHAR(36) NOT NULL REFERENCES products(id) ON DELETE CASCADE,
                created_at DATETIME NOT NULL DEFAULT CURRENT_TIMESTAMP,
                CONSTRAINT uq_clone_items_job_source UNIQUE (job_id, source_product_id)
            )
            """
        )
    )


MIGRATIONS: tuple[MigrationStep, ...] = (
    MigrationStep(version=1, name="baseline", apply=_migration_0001_baseline),
    MigrationStep(version=2, name="products_tiered_price_cache", apply=_migration_0002_tiered_price_cache),
    MigrationStep(version=3, name="clone_job_deadline", apply=_migration_0003_clone_job_deadline),
    MigrationStep(version=4, name="clone_batches_queue", apply=_migration_0004_clone_batches_queue),
    MigrationStep(version=5, name="clone_listing_indexes", apply=_migration_0005_clone_listing_indexes),
    MigrationStep(version=6, name="clone_items", apply=_migration_0006_clone_items),
)


def apply_migrations(engine: Engine) -> None:
    with engine.begin() as conn:
        _ensure_schema_migrations_table(conn)

        existing_versions = {
            int(row[0])
            for row in conn.execute(text("SELECT version FROM schema_migrations ORDER BY version ASC")).all()
        }

        for step in MIGRATIONS:
            if step.version in existing_versions:
                continue

            step.apply(conn)
            conn.execute(
                text("INSERT INTO schema_migrations(version, name) VALUES (:version, :name)"),
                {"version": step.version, "name": step.name},
            )

from __future__ import annotations

from pathlib import Path

from sqlalchemy import create_engine, text

from catalogclone.db.init_db import initialize_database
from catalogclone.db.migrations import MIGRATIONS, apply_migrations


def _column_names(conn, table_name: str) -> set[str]:
    rows = conn.execute(text(f"PRAGMA table_info('{table_name}')")).mappings().all()
    return {str(row["name"]) for row in rows}


def _index_names(conn, table_name: str) -> set[str]:
    rows = conn.execute(text(f"PRAGMA index_list('{table_name}')")).mappings().all()
    return {str(row["name"]) for row in rows}


def test_apply_migrations_upgrades_legacy_schema(tmp_path: Path) -> None:
    db_path = tmp_path / "legacy.sqlite3"
    engine = create_engine(f"sqlite:///{db_path.as_posix()}", future=True)

    with engine.begin() as conn:
        conn.execute(
            text(
                """
                CREATE TABLE products (
                    id VARCHAR(36) PRIMARY KEY,
                    account_id VARCHAR(36) NOT NULL,
                    title VARCHAR(512) NOT NULL,
                    slug VARCHAR(512) NOT NULL,
                    price NUMERIC(10, 2),
                    created_at DATETIME NOT NULL DEFAULT CURRENT_TIMESTAMP,
                    updated_at DATETIME NOT NULL DEFAULT CURRENT_TIMESTAMP
                )
                """
            )
        )
        conn.execute(
            text(
                """
                CREATE TABLE clone_jobs (
                    id VARCHAR(36) PRIMARY KEY,
                    source_account_id VARCHAR(36) NOT NULL,
                    target_account_id VARCHAR(36) NOT NULL,
                    status VARCHAR(10) NOT NULL,
                    total_items INTEGER NOT NULL DEFAULT 0,
                    processed_count INTEGER NOT NULL DEFAULT 0,
                    error_message TEXT,
                    created_at DATETIME NOT NULL DEFAULT CURRENT_TIMESTAMP,
                    updated_at DATETIME NOT NULL DEFAULT CURRENT_TIMESTAMP,
                    completed_at DATETIME
                )
                """
            )
        )
        conn.execute(
            text(
                "INSERT INTO clone_jobs(id, source_account_id, target_account_id, status, total_items) "
                "VALUES ('job-1', 'a', 'b', 'processing', 40)"
            )
        )

    apply_migrations(engine)
    apply_migrations(engine)

    with engine.begin() as conn:
        product_columns = _column_names(conn, "products")
        product_indexes = _index_names(conn, "products")
        job_columns = _column_names(conn, "clone_jobs")
        job_indexes = _index_names(conn, "clone_jobs")
        batch_columns = _column_names(conn, "clone_batches")
        batch_indexes = _index_names(conn, "clone_batches")
        item_columns = _column_names(conn, "clone_items")
        surviving_job = conn.execute(text("SELECT status, total_items FROM clone_jobs WHERE id = 'job-1'")).one()
        migration_versions = [
            int(row[0])
            for row in conn.execute(text("SELECT version FROM schema_migrations ORDER BY version ASC")).all()
        ]

    assert {"min_tiered_price", "max_tiered_price"}.issubset(product_columns)
    assert "ix_products_account_created_id" in product_indexes
    assert "deadline_at" in job_columns
    assert "ix_clone_jobs_created_id" in job_indexes
    assert {
        "job_id",
        "batch_offset",
        "batch_limit",
        "status",
        "processed",
        "errors",
        "has_more",
        "started_at",
        "finished_at",
    }.issubset(batch_columns)
    assert {"ix_clone_batches_status_id", "ix_clone_batches_job_status"}.issubset(batch_indexes)
    assert {"job_id", "source_product_id", "target_product_id"}.issubset(item_columns)
    assert tuple(surviving_job) == ("processing", 40)
    assert migration_versions == [step.version for step in MIGRATIONS]


def test_initialize_database_on_fresh_file_records_every_step(tmp_path: Path) -> None:
    db_path = tmp_path / "fresh.sqlite3"
    engine = create_engine(f"sqlite:///{db_path.as_posix()}", future=True)

    initialize_database(engine)
    initialize_database(engine)

    with engine.begin() as conn:
        tables = {
            str(row[0]) for row in conn.execute(text("SELECT name FROM sqlite_master WHERE type = 'table'")).all()
        }
        versions = [int(row[0]) for row in conn.execute(text("SELECT version FROM schema_migrations")).all()]

    assert {
        "accounts",
        "product_categories",
        "products",
        "product_images",
        "product_price_tiers",
        "clone_jobs",
        "clone_batches",
        "clone_items",
        "schema_migrations",
    }.issubset(tables)
    assert sorted(versions) == [step.version for step in MIGRATIONS]

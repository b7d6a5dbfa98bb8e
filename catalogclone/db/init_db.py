from __future__ import annotations

from sqlalchemy import Engine, text

from catalogclone.db.migrations import apply_migrations
from catalogclone.db.models import Base
from catalogclone.db.session import get_engine


def initialize_database(engine: Engine | None = None) -> None:
    target = engine or get_engine()
    Base.metadata.create_all(bind=target)
    apply_migrations(target)

    if target.url.drivername.startswith("sqlite"):
        with target.connect() as conn:
            conn.execute(text("PRAGMA optimize;"))
            conn.commit()

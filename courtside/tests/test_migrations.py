"""
Tests that the Alembic migrations build (and tear down) the full schema.
"""

from pathlib import Path

from alembic import command
from alembic.config import Config
from sqlalchemy import create_engine, inspect

ALEMBIC_DIR = Path(__file__).resolve().parent.parent / "alembic"


def _alembic_config(db_path) -> Config:
    cfg = Config()
    cfg.set_main_option("script_location", str(ALEMBIC_DIR))
    cfg.set_main_option("sqlalchemy.url", f"sqlite+aiosqlite:///{db_path}")
    return cfg


def _tables(db_path):
    engine = create_engine(f"sqlite:///{db_path}")
    try:
        inspector = inspect(engine)
        return set(inspector.get_table_names()), {
            ix["name"] for ix in inspector.get_indexes("queue_entries")
        } if "queue_entries" in inspector.get_table_names() else set()
    finally:
        engine.dispose()


def test_upgrade_creates_schema(tmp_path):
    db_path = tmp_path / "migrated.db"

    command.upgrade(_alembic_config(db_path), "head")

    tables, queue_indexes = _tables(db_path)
    assert {
        "sports",
        "venues",
        "courts",
        "player_profiles",
        "player_ratings",
        "queue_entries",
        "matches",
        "match_players",
        "match_feedback",
        "behavior_metrics",
        "alembic_version",
    } <= tables
    assert "uq_queue_entries_one_waiting" in queue_indexes


def test_downgrade_drops_schema(tmp_path):
    db_path = tmp_path / "migrated.db"
    cfg = _alembic_config(db_path)
    command.upgrade(cfg, "head")

    command.downgrade(cfg, "base")

    tables, _ = _tables(db_path)
    assert tables == {"alembic_version"}

"""Alembic migrations against a throwaway SQLite file."""

from __future__ import annotations

from pathlib import Path
from typing import TYPE_CHECKING

import pytest
from alembic import command
from alembic.config import Config
from sqlalchemy import create_engine, inspect

from clinic_notifications.core.database.base import Base
from clinic_notifications.core.settings import clear_all_caches
from clinic_notifications.features.notifications import models  # noqa: F401

if TYPE_CHECKING:
    from collections.abc import Iterator

ALEMBIC_DIR = Path(__file__).resolve().parents[2] / "alembic"

pytestmark = pytest.mark.integration


@pytest.fixture
def db_file(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Iterator[Path]:
    path = tmp_path / "migrations.db"
    monkeypatch.setenv("DB_URL", f"sqlite+aiosqlite:///{path}")
    clear_all_caches()
    yield path
    clear_all_caches()


@pytest.fixture
def alembic_config() -> Config:
    # No ini file, so logging configuration is left alone
    config = Config()
    config.set_main_option("script_location", str(ALEMBIC_DIR))
    return config


def _tables(path: Path) -> set[str]:
    engine = create_engine(f"sqlite:///{path}")
    try:
        return set(inspect(engine).get_table_names())
    finally:
        engine.dispose()


def test_upgrade_creates_every_mapped_table(db_file: Path, alembic_config: Config) -> None:
    command.upgrade(alembic_config, "head")

    assert _tables(db_file) == set(Base.metadata.tables) | {"alembic_version"}

    engine = create_engine(f"sqlite:///{db_file}")
    try:
        indexes = {index["name"]: index for index in inspect(engine).get_indexes("reminder_jobs")}
    finally:
        engine.dispose()
    assert indexes["uq_reminder_jobs_pending_kind"]["unique"]


def test_downgrade_removes_them(db_file: Path, alembic_config: Config) -> None:
    command.upgrade(alembic_config, "head")
    command.downgrade(alembic_config, "base")

    assert _tables(db_file) == {"alembic_version"}

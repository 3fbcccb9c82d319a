from __future__ import annotations

import logging
from pathlib import Path

from alembic.config import Config
from alembic.script import ScriptDirectory
from sqlalchemy import inspect
from sqlalchemy.engine import Engine

from loyalty.core.config import DATABASE_URL, IS_PROD, IS_TEST

logger = logging.getLogger(__name__)
MIGRATIONS_PREFIX = "[MIGRATIONS]"

ACTIVE_CODE_INDEX = "uq_coupon_redemptions_active_code"


def validate_database_environment() -> None:
    if IS_PROD and DATABASE_URL.startswith("sqlite"):
        logger.critical("%s SQLite is forbidden in production", MIGRATIONS_PREFIX)
        raise RuntimeError("SQLite is forbidden in production environment")


def expected_migration_heads(alembic_config_path: Path) -> set[str]:
    cfg = Config(str(alembic_config_path))
    cfg.set_main_option("script_location", str(alembic_config_path.parent / "alembic"))
    return set(ScriptDirectory.from_config(cfg).get_heads())


def ensure_redemption_code_index(engine: Engine) -> None:
    """Confere o índice único parcial em coupon_redemptions.code (status = 'active')."""
    inspector = inspect(engine)
    if not inspector.has_table("coupon_redemptions"):
        logger.critical("%s coupon_redemptions table missing", MIGRATIONS_PREFIX)
        raise RuntimeError("coupon_redemptions table missing / migrations not applied")

    indexes = {index["name"]: index for index in inspector.get_indexes("coupon_redemptions")}
    index = indexes.get(ACTIVE_CODE_INDEX)
    if index is None or not index.get("unique"):
        logger.critical("%s active code index missing name=%s", MIGRATIONS_PREFIX, ACTIVE_CODE_INDEX)
        raise RuntimeError("Unique index on active redemption codes is missing")


def ensure_migrations_applied(*, engine: Engine, alembic_config_path: Path) -> None:
    if IS_TEST:
        logger.info("%s migration check skipped (ENV=test)", MIGRATIONS_PREFIX)
        return

    if not alembic_config_path.exists():
        logger.critical("%s alembic.ini not found path=%s", MIGRATIONS_PREFIX, alembic_config_path)
        raise RuntimeError("alembic config not found")

    expected = expected_migration_heads(alembic_config_path)

    with engine.connect() as connection:
        if not inspect(connection).has_table("alembic_version"):
            logger.critical("%s alembic_version table missing", MIGRATIONS_PREFIX)
            raise RuntimeError("Database has no migration state")
        rows = connection.exec_driver_sql("SELECT version_num FROM alembic_version").fetchall()

    current = {row[0] for row in rows if row and row[0]}
    if current != expected:
        logger.critical(
            "%s pending migration current=%s expected=%s",
            MIGRATIONS_PREFIX,
            sorted(current),
            sorted(expected),
        )
        raise RuntimeError("Pending migrations detected")

    logger.info("%s schema at head=%s", MIGRATIONS_PREFIX, ",".join(sorted(current)))

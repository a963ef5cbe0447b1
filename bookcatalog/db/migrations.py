"""
Schema migration engine.

The installed schema is an integer state stored in the ``schema_version``
singleton. Each ``sql/up<N>.sql`` script is the transition from ``N - 1`` to
``N`` and stamps the record with ``N`` as its last statement. The engine runs
once at startup, before the catalog serves traffic, and is not safe to race
against another instance on the same database.
"""

import logging
import re
from pathlib import Path
from typing import Dict, List, Optional, Tuple

import psycopg
from psycopg_pool import ConnectionPool

from bookcatalog.errors import MigrationError, SchemaVersionError

logger = logging.getLogger(__name__)

MIGRATIONS_DIR = Path(__file__).parent / "sql"
SCRIPT_PATTERN = re.compile(r"up(\d+)\.sql")

VERSION_QUERY = "SELECT MAX(version) AS version FROM schema_version"


def discover_scripts(directory: Path = MIGRATIONS_DIR) -> Dict[int, Path]:
    """Map version number to script path, requiring versions 1..N with no gaps."""
    scripts: Dict[int, Path] = {}
    for path in sorted(Path(directory).glob("up*.sql")):
        match = SCRIPT_PATTERN.fullmatch(path.name)
        if not match:
            continue
        version = int(match.group(1))
        if version in scripts:
            raise MigrationError(f"Duplicate migration script for version {version}: {path.name}")
        scripts[version] = path
    expected = list(range(1, len(scripts) + 1))
    if sorted(scripts) != expected:
        missing = sorted(set(range(1, max(scripts, default=0) + 1)) - set(scripts))
        raise MigrationError("Migration scripts are not contiguous", detail=f"missing versions {missing}")
    return scripts


class MigrationEngine:
    def __init__(self, pool: ConnectionPool, directory: Path = MIGRATIONS_DIR):
        self.pool = pool
        self.directory = Path(directory)
        self._scripts: Optional[Dict[int, Path]] = None

    @property
    def scripts(self) -> Dict[int, Path]:
        if self._scripts is None:
            self._scripts = discover_scripts(self.directory)
        return self._scripts

    @property
    def latest(self) -> int:
        return max(self.scripts, default=0)

    def read_script(self, version: int) -> str:
        try:
            return self.scripts[version].read_text(encoding="utf-8")
        except KeyError:
            raise MigrationError(f"No migration script for version {version}") from None
        except OSError as exc:
            raise MigrationError(f"Failed to read migration script {version}", detail=str(exc)) from exc

    def current_version(self) -> int:
        """Installed version; a missing table or an empty record is version 0."""
        try:
            with self.pool.connection() as conn:
                row = conn.execute(VERSION_QUERY).fetchone()
        except psycopg.errors.UndefinedTable:
            logger.info("No schema_version table found, treating database as empty")
            return 0
        except psycopg.Error as exc:
            raise MigrationError("Failed to read schema version", detail=str(exc)) from exc
        if not row or row["version"] is None:
            return 0
        return int(row["version"])

    def status(self) -> Tuple[int, int]:
        return self.current_version(), self.latest

    def pending(self, current: int) -> List[int]:
        latest = self.latest
        if current > latest:
            raise SchemaVersionError(current, latest)
        return list(range(current + 1, latest + 1))

    def migrate(self) -> List[int]:
        """Apply every pending script in ascending order; return the versions applied."""
        current = self.current_version()
        steps = self.pending(current)
        if not steps:
            logger.info("Database schema up to date at version %s", current)
            return []
        logger.info("Database schema at version %s, upgrading to %s", current, self.latest)
        for version in steps:
            self._apply(version)
        return steps

    def _apply(self, version: int) -> None:
        script = self.read_script(version)
        logger.info("Running upgrade %s (%s)", version, self.scripts[version].name)
        try:
            with self.pool.connection() as conn:
                with conn.transaction():
                    conn.execute(script)
                    row = conn.execute(VERSION_QUERY).fetchone()
                    stamped = row["version"] if row else None
                    if stamped != version:
                        raise MigrationError(
                            f"Upgrade {version} did not record its version",
                            detail=f"schema_version reads {stamped}",
                        )
        except psycopg.Error as exc:
            logger.error("Failed to upgrade DB schema to version %s due to %s", version, exc)
            raise MigrationError(f"Failed to upgrade DB schema to version {version}", detail=str(exc)) from exc
        logger.info("Upgraded to DB schema v%s", version)

"""PostgreSQL writer module.

This module handles:
- Connecting to PostgreSQL over an encrypted connection
- Upserting hourly readings through a stored function, one call per reading
- Accumulating inserted/updated counts per batch

Each reading is its own unit of work (autocommit), so a failing row is
logged and skipped without affecting the rest of the batch, and a batch
that stopped halfway can be written again without creating duplicates.
"""

import logging
import time
from dataclasses import dataclass
from typing import Dict, Iterable, Optional

import psycopg2
import psycopg2.extras

from elicznik.tauron_parser import Direction, Reading, TauronData

# Configure module logger
logger = logging.getLogger(__name__)

DEFAULT_PROCEDURE = "tauron_add_entry"


class DatabaseError(Exception):
    """Exception raised for connection-level database failures."""
    pass


@dataclass
class WriteResult:
    """Outcome of writing one batch.

    Attributes:
        processed: Number of readings handed to the writer
        inserted: Rows newly inserted
        updated: Existing rows whose value changed
        failed: Readings whose upsert call failed
    """
    processed: int = 0
    inserted: int = 0
    updated: int = 0
    failed: int = 0

    def __add__(self, other: "WriteResult") -> "WriteResult":
        return WriteResult(
            processed=self.processed + other.processed,
            inserted=self.inserted + other.inserted,
            updated=self.updated + other.updated,
            failed=self.failed + other.failed,
        )


class PostgresWriter:
    """Writer storing hourly readings in PostgreSQL.

    Every reading is passed to the stored function as
    (date, hour, balanced, imported, value); the function reports how many
    rows it inserted and updated. A call that changes nothing reports zero
    for both.

    Attributes:
        host: Database server host
        dbname: Database name
        username: Database user
        password: Database password
        port: Database server port
        sslmode: libpq sslmode (encrypted transport by default)
        procedure: Name of the upsert function
    """

    def __init__(
        self,
        host: str,
        dbname: str,
        username: str,
        password: str,
        port: int = 5432,
        sslmode: str = "require",
        procedure: str = DEFAULT_PROCEDURE,
    ):
        self.host = host
        self.dbname = dbname
        self.username = username
        self.password = password
        self.port = port
        self.sslmode = sslmode
        self.procedure = procedure
        self._conn = None

    @property
    def query(self) -> str:
        return (f"SELECT * FROM {self.procedure}"
                "(%s::date, %s::smallint, %s::boolean, %s::boolean, %s::float)")

    def connect(self) -> None:
        """Connect to PostgreSQL.

        Raises:
            DatabaseError: If the connection cannot be established
        """
        logger.info(f"Connecting to postgres://{self.username}@{self.host}:{self.port}/{self.dbname}")
        try:
            self._conn = psycopg2.connect(
                host=self.host,
                port=self.port,
                dbname=self.dbname,
                user=self.username,
                password=self.password,
                sslmode=self.sslmode,
                application_name="elicznik",
            )
            self._conn.autocommit = True
        except psycopg2.Error as e:
            self._conn = None
            raise DatabaseError(f"PostgreSQL connection error: {e}")
        logger.info("Connected successfully")

    def close(self) -> None:
        """Close the PostgreSQL connection."""
        if self._conn is not None:
            self._conn.close()
            self._conn = None
            logger.info("PostgreSQL connection closed")

    def __enter__(self) -> "PostgresWriter":
        self.connect()
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    def _upsert(self, cursor, reading: Reading) -> Dict[str, int]:
        cursor.execute(self.query, (
            reading.date,
            reading.hour,
            reading.balanced,
            reading.direction is Direction.IMPORTED,
            reading.value,
        ))
        counts = {"inserted": 0, "updated": 0}
        for row in cursor.fetchall():
            for key in counts:
                counts[key] += row.get(key) or 0
        return counts

    def write_batch(self, readings: Iterable[Reading], name: Optional[str] = None) -> WriteResult:
        """Upsert a batch of readings.

        A failing upsert is logged and counted as failed; the batch goes on.

        Args:
            readings: Readings to store
            name: Batch name used in log messages

        Returns:
            WriteResult with accumulated counts

        Raises:
            DatabaseError: If not connected
        """
        if self._conn is None:
            raise DatabaseError("Not connected to PostgreSQL. Call connect() first.")

        result = WriteResult()
        started = time.time()
        label = name or "grid"

        with self._conn.cursor(cursor_factory=psycopg2.extras.RealDictCursor) as cursor:
            for reading in readings:
                result.processed += 1
                try:
                    counts = self._upsert(cursor, reading)
                except psycopg2.Error as e:
                    result.failed += 1
                    logger.error(f"Problem storing {reading.timestamp} ({label}): {e}")
                    continue
                result.inserted += counts["inserted"]
                result.updated += counts["updated"]

        logger.info(f"{label.capitalize()} entries: {result.processed} processed => "
                    f"{result.inserted} inserted, {result.updated} updated, {result.failed} failed")
        logger.info(f"Total SQL time: {(time.time() - started) * 1000:.0f} ms")
        return result

    def write_all(self, data: TauronData) -> Dict[Direction, WriteResult]:
        """Write the imported and the exported batch.

        Args:
            data: Decoded provider data

        Returns:
            WriteResult per direction
        """
        return {
            direction: self.write_batch(data.batch(direction), name=direction.value)
            for direction in Direction
        }

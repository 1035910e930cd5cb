"""DuckDB Storage Adapter.

This adapter implements the FactRepositoryPort contract for persisting
observation facts to DuckDB, an in-process database, in a single
entity-attribute-value table.

Security Impact:
    - Only ObservationFact instances can be persisted
    - Observation values are never logged, only keys and counts
    - Parameterized statements only, no string-built SQL with values

Architecture:
    - Implements FactRepositoryPort (Hexagonal Architecture)
    - Isolated from domain core - only depends on ports and models
    - Structured payloads are stored as JSON text; key order is preserved
"""

import json
import logging
from pathlib import Path
from typing import Any, List, Optional

import duckdb
import pandas as pd

from visitfacts.domain.observation_fact import FACT_COLUMNS, FactKey, ObservationFact
from visitfacts.domain.ports import FactRepositoryPort, RepositoryError, Result
from visitfacts.infrastructure.config_manager import DatabaseConfig

logger = logging.getLogger(__name__)


class DuckDBFactRepository(FactRepositoryPort):
    """DuckDB implementation of FactRepositoryPort.

    Parameters:
        db_config: DatabaseConfig from configuration manager (preferred)
        db_path: Path to DuckDB database file (or ':memory:' for in-memory)

    Example Usage:
        ```python
        from visitfacts.infrastructure.config_manager import get_database_config

        repository = DuckDBFactRepository(db_config=get_database_config())
        result = await repository.upsert(fact)
        ```
    """

    def __init__(
        self,
        db_config: Optional[DatabaseConfig] = None,
        db_path: Optional[str] = None
    ):
        """Initialize DuckDB adapter.

        Note:
            If both db_config and db_path are provided, db_config takes precedence.
            If neither is provided, defaults to in-memory database.
        """
        if db_config:
            if db_config.db_type != "duckdb":
                raise RepositoryError(
                    f"DatabaseConfig type '{db_config.db_type}' does not match DuckDB adapter",
                    operation="__init__"
                )
            self.db_path = db_config.db_path or ":memory:"
        elif db_path:
            self.db_path = db_path
        else:
            self.db_path = ":memory:"

        self._connection: Optional[duckdb.DuckDBPyConnection] = None
        self._initialized = False

        if self.db_path != ":memory:":
            db_path_obj = Path(self.db_path)
            if not db_path_obj.parent.exists():
                raise RepositoryError(
                    f"Database directory does not exist: {db_path_obj.parent}",
                    operation="__init__"
                )

    def _get_connection(self) -> duckdb.DuckDBPyConnection:
        """Get or create the DuckDB connection (created lazily, then reused)."""
        if self._connection is None:
            try:
                self._connection = duckdb.connect(self.db_path)
                logger.info(f"Connected to DuckDB database: {self.db_path}")
            except Exception as e:
                raise RepositoryError(
                    f"Failed to connect to DuckDB: {str(e)}",
                    operation="connect",
                    details={"db_path": self.db_path}
                )
        return self._connection

    def initialize_schema(self) -> Result[None]:
        """Create the observation_fact table.

        Returns:
            Result[None]: Success or failure result
        """
        try:
            conn = self._get_connection()
            conn.execute("""
                CREATE TABLE IF NOT EXISTS observation_fact (
                    patient_id VARCHAR NOT NULL,
                    visit_id VARCHAR NOT NULL,
                    concept_code VARCHAR NOT NULL,
                    value_type VARCHAR NOT NULL,
                    numeric_value DOUBLE,
                    text_value VARCHAR,
                    unit_code VARCHAR,
                    structured_payload VARCHAR,
                    recorded_at TIMESTAMP NOT NULL,
                    category VARCHAR,
                    source_system VARCHAR,
                    PRIMARY KEY (patient_id, visit_id, concept_code)
                )
            """)
            # No secondary indexes: DuckDB rejects INSERT OR REPLACE on
            # indexed tables, and the primary key already leads with patient_id
            self._initialized = True
            logger.info("Database schema initialized successfully")
            return Result.success_result(None)

        except Exception as e:
            error_msg = f"Failed to initialize schema: {str(e)}"
            logger.error(error_msg, exc_info=True)
            return Result.failure_result(
                RepositoryError(error_msg, operation="initialize_schema"),
                error_type="RepositoryError"
            )

    def _ensure_schema(self) -> Optional[Result]:
        if self._initialized:
            return None
        init_result = self.initialize_schema()
        if not init_result.is_success():
            return init_result
        return None

    async def get(self, patient_id: str, visit_id: str) -> Result[List[ObservationFact]]:
        return self._select(
            "WHERE patient_id = ? AND visit_id = ?",
            [patient_id, visit_id],
            operation="get"
        )

    async def list_for_patient(
        self,
        patient_id: str,
        concept_code: Optional[str] = None
    ) -> Result[List[ObservationFact]]:
        if concept_code is None:
            return self._select(
                "WHERE patient_id = ? ORDER BY recorded_at DESC",
                [patient_id],
                operation="list_for_patient"
            )
        return self._select(
            "WHERE patient_id = ? AND concept_code = ? ORDER BY recorded_at DESC",
            [patient_id, concept_code],
            operation="list_for_patient"
        )

    async def upsert(self, fact: ObservationFact) -> Result[FactKey]:
        failed = self._ensure_schema()
        if failed is not None:
            return failed
        try:
            row = fact.model_dump()
            if row["structured_payload"] is not None:
                row["structured_payload"] = json.dumps(row["structured_payload"])
            placeholders = ", ".join("?" for _ in FACT_COLUMNS)
            self._get_connection().execute(
                f"INSERT OR REPLACE INTO observation_fact ({', '.join(FACT_COLUMNS)}) "
                f"VALUES ({placeholders})",
                [row[column] for column in FACT_COLUMNS]
            )
            logger.debug(f"Upserted fact {fact.key}")
            return Result.success_result(fact.key)

        except Exception as e:
            error_msg = f"Failed to upsert fact {fact.key}: {str(e)}"
            logger.error(error_msg, exc_info=True)
            return Result.failure_result(
                RepositoryError(error_msg, operation="upsert", details={"key": str(fact.key)}),
                error_type="RepositoryError"
            )

    async def delete(self, key: FactKey) -> Result[FactKey]:
        failed = self._ensure_schema()
        if failed is not None:
            return failed
        try:
            self._get_connection().execute(
                "DELETE FROM observation_fact WHERE patient_id = ? AND visit_id = ? AND concept_code = ?",
                [key.patient_id, key.visit_id, key.concept_code]
            )
            logger.debug(f"Deleted fact {key}")
            return Result.success_result(key)

        except Exception as e:
            error_msg = f"Failed to delete fact {key}: {str(e)}"
            logger.error(error_msg, exc_info=True)
            return Result.failure_result(
                RepositoryError(error_msg, operation="delete", details={"key": str(key)}),
                error_type="RepositoryError"
            )

    def _select(self, where: str, params: List[Any], operation: str) -> Result[List[ObservationFact]]:
        failed = self._ensure_schema()
        if failed is not None:
            return failed
        try:
            df = self._get_connection().execute(
                f"SELECT {', '.join(FACT_COLUMNS)} FROM observation_fact {where}",
                params
            ).fetchdf()
            facts = [self._row_to_fact(row) for row in df.to_dict(orient="records")]
            return Result.success_result(facts)

        except Exception as e:
            error_msg = f"Failed to read facts ({operation}): {str(e)}"
            logger.error(error_msg, exc_info=True)
            return Result.failure_result(
                RepositoryError(error_msg, operation=operation),
                error_type="RepositoryError"
            )

    @staticmethod
    def _row_to_fact(row: dict) -> ObservationFact:
        """Convert a fetched DataFrame record back into an ObservationFact.

        pandas represents SQL NULL as NaN/NaT/None depending on the column
        dtype; all of them map to None.
        """
        clean = {column: (None if _is_null(row.get(column)) else row.get(column)) for column in FACT_COLUMNS}
        if clean["structured_payload"] is not None:
            clean["structured_payload"] = json.loads(clean["structured_payload"])
        if clean["recorded_at"] is not None and isinstance(clean["recorded_at"], pd.Timestamp):
            clean["recorded_at"] = clean["recorded_at"].to_pydatetime()
        if clean["source_system"] is None:
            clean.pop("source_system")
        return ObservationFact(**clean)

    async def close(self) -> None:
        """Close the database connection."""
        if self._connection:
            try:
                self._connection.close()
                self._connection = None
                self._initialized = False
                logger.info("Closed DuckDB connection")
            except Exception as e:
                logger.warning(f"Error closing connection: {str(e)}")


def _is_null(value: Any) -> bool:
    if value is None:
        return True
    if isinstance(value, (dict, list)):
        return False
    try:
        return bool(pd.isna(value))
    except (TypeError, ValueError):
        return False

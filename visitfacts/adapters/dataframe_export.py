"""DataFrame export of observation facts.

Flattens fact rows into a pandas DataFrame (one row per fact, the persisted
columns in schema order) for analysis or CSV export. Structured payloads are
serialized as JSON text so the frame stays flat.
"""

import json
import logging
from pathlib import Path
from typing import Iterable

import pandas as pd

from visitfacts.domain.observation_fact import FACT_COLUMNS, ObservationFact
from visitfacts.domain.ports import RepositoryError, Result

logger = logging.getLogger(__name__)


def facts_to_dataframe(facts: Iterable[ObservationFact]) -> pd.DataFrame:
    """Build a DataFrame with one row per fact, sorted by concept code."""
    records = []
    for fact in facts:
        record = fact.model_dump()
        if record["structured_payload"] is not None:
            record["structured_payload"] = json.dumps(record["structured_payload"])
        records.append(record)

    df = pd.DataFrame(records, columns=FACT_COLUMNS)
    if not df.empty:
        df = df.sort_values("concept_code", kind="stable").reset_index(drop=True)
    return df


def export_facts_csv(facts: Iterable[ObservationFact], output_path: str) -> Result[int]:
    """Write facts to a CSV file.

    Returns:
        Result[int]: Number of exported rows, or a RepositoryError failure
    """
    try:
        df = facts_to_dataframe(facts)
        df.to_csv(Path(output_path), index=False)
        logger.info(f"Exported {len(df)} facts to {output_path}")
        return Result.success_result(len(df))
    except OSError as e:
        error_msg = f"Failed to export facts to {output_path}: {str(e)}"
        logger.error(error_msg, exc_info=True)
        return Result.failure_result(
            RepositoryError(error_msg, operation="export", details={"path": output_path}),
            error_type="RepositoryError"
        )

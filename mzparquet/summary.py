"""Read-back summary of a written mzparquet file."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from pathlib import Path

import numpy as np
import pandas as pd
import pyarrow.parquet as pq

logger = logging.getLogger(__name__)


@dataclass
class OutputSummary:
    """What a written mzparquet file contains."""

    path: Path
    n_rows: int
    n_row_groups: int
    rows_per_group: list[int] = field(default_factory=list)
    n_scans: int = 0
    rows_per_level: dict[int, int] = field(default_factory=dict)
    scans_ordered: bool = True
    metadata: dict[str, str] = field(default_factory=dict)

    def __str__(self) -> str:
        levels = ", ".join(f"MS{k}={v:,}" for k, v in sorted(self.rows_per_level.items()))
        order = "ordered" if self.scans_ordered else "NOT ordered"
        return (
            f"{self.path.name}: {self.n_rows:,} rows in {self.n_row_groups} row group(s), "
            f"{self.n_scans:,} scans ({levels}), scans {order}"
        )


def summarize_output(path: Path | str) -> OutputSummary:
    """Summarize row groups, scans and MS levels of an mzparquet file.

    Args:
        path: Path to the parquet file

    Returns:
        OutputSummary

    """
    path = Path(path)
    pf = pq.ParquetFile(path)
    meta = pf.metadata

    rows_per_group = [meta.row_group(i).num_rows for i in range(meta.num_row_groups)]
    file_metadata = {
        k.decode(): v.decode()
        for k, v in (pf.schema_arrow.metadata or {}).items()
        if k.startswith(b"mzparquet.")
    }

    df = pd.read_parquet(path, columns=["scan", "level"])
    pf.close()

    scans = df["scan"].to_numpy()
    ordered = bool(np.all(np.diff(scans.astype(np.int64)) >= 0)) if len(scans) > 1 else True
    rows_per_level = {int(k): int(v) for k, v in df["level"].value_counts().sort_index().items()}

    summary = OutputSummary(
        path=path,
        n_rows=meta.num_rows,
        n_row_groups=meta.num_row_groups,
        rows_per_group=rows_per_group,
        n_scans=int(df["scan"].nunique()),
        rows_per_level=rows_per_level,
        scans_ordered=ordered,
        metadata=file_metadata,
    )
    logger.debug(str(summary))
    return summary

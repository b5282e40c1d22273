"""Flat per-peak output rows and their arrow schema."""

from __future__ import annotations

import logging
from typing import NamedTuple

import pyarrow as pa

from .peaks import PeakSelection
from .precision import FLOAT, INTEGER, check_precision, narrow_float, narrow_floats, narrow_intensities
from .precursor import ResolvedPrecursor

logger = logging.getLogger(__name__)


class OutputRow(NamedTuple):
    """One peak of one scan, as written to the output file."""

    scan: int
    level: int
    rt: float
    mz: float
    intensity: float | int
    ion_mobility: float | None
    isolation_lower: float | None
    isolation_upper: float | None
    precursor_scan: int | None
    precursor_mz: float | None
    precursor_charge: int | float | None


COLUMNS = list(OutputRow._fields)


def build_schema(
    intensity_precision: str = FLOAT,
    charge_precision: str = INTEGER,
    metadata: dict[str, str] | None = None,
) -> pa.Schema:
    """Arrow schema for the output file.

    Args:
        intensity_precision: "float" (float32) or "integer" (uint32)
        charge_precision: "integer" (uint32) or "float" (float32)
        metadata: Optional key/value pairs stored in the file footer

    Returns:
        pyarrow Schema with one field per OutputRow column

    """
    check_precision("intensity precision", intensity_precision)
    check_precision("charge precision", charge_precision)

    intensity_type = pa.uint32() if intensity_precision == INTEGER else pa.float32()
    charge_type = pa.uint32() if charge_precision == INTEGER else pa.float32()

    fields = [
        pa.field("scan", pa.uint32(), nullable=False),
        pa.field("level", pa.uint32(), nullable=False),
        pa.field("rt", pa.float32(), nullable=False),
        pa.field("mz", pa.float32(), nullable=False),
        pa.field("intensity", intensity_type, nullable=False),
        pa.field("ion_mobility", pa.float32()),
        pa.field("isolation_lower", pa.float32()),
        pa.field("isolation_upper", pa.float32()),
        pa.field("precursor_scan", pa.uint32()),
        pa.field("precursor_mz", pa.float32()),
        pa.field("precursor_charge", charge_type),
    ]
    return pa.schema(fields, metadata=metadata)


def flatten_scan(
    scan: int,
    ms_level: int,
    retention_time: float,
    precursor: ResolvedPrecursor,
    peaks: PeakSelection,
    intensity_precision: str = FLOAT,
) -> list[OutputRow]:
    """Expand one scan into one OutputRow per peak, in peak-list order.

    Scan-level attributes are copied unchanged into every row. Ion mobility
    is always absent.
    """
    if peaks.is_empty:
        return []

    rt = narrow_float(retention_time)
    masses = narrow_floats(peaks.masses).tolist()
    intensities = narrow_intensities(peaks.intensities, intensity_precision).tolist()

    return [
        OutputRow(
            scan,
            ms_level,
            rt,
            mz,
            intensity,
            None,
            precursor.isolation_lower,
            precursor.isolation_upper,
            precursor.precursor_scan,
            precursor.precursor_mz,
            precursor.precursor_charge,
        )
        for mz, intensity in zip(masses, intensities)
    ]


def rows_to_table(rows: list[OutputRow], schema: pa.Schema) -> pa.Table:
    """Pivot a batch of rows into an arrow table with ``schema``."""
    if not rows:
        return schema.empty_table()

    columns = list(zip(*rows))
    arrays = [
        pa.array(values, type=field.type)
        for values, field in zip(columns, schema)
    ]
    return pa.Table.from_arrays(arrays, schema=schema)

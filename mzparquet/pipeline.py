"""Scan-to-parquet conversion pipeline.

Visits every scan of a source in increasing order and, for each one:

1. picks the peak list (centroids, or the simplified scan when empty)
2. resolves precursor attributes against the per-level scan history
3. flattens the scan into one row per peak
4. pushes the rows into a chunked sink that writes fixed-size batches

Processing is strictly sequential; precursor resolution of a scan depends on
the state left behind by every earlier scan.
"""

from __future__ import annotations

import logging
import math
import time
from dataclasses import dataclass, field
from pathlib import Path

from . import __version__
from .peaks import PeakMode, extract_peaks
from .precision import FLOAT, INTEGER, check_precision
from .precursor import PrecursorResolver
from .records import build_schema, flatten_scan
from .sink import DEFAULT_CHUNK_SIZE, BatchWriter, ChunkedSink
from .sources import ScanSource, open_scan_source
from .writer import DEFAULT_COMPRESSION, DEFAULT_COMPRESSION_LEVEL, ParquetChunkWriter

logger = logging.getLogger(__name__)

OUTPUT_SUFFIX = ".mzparquet"


@dataclass
class ConversionConfig:
    """Configuration for a conversion run."""

    # Output
    chunk_size: int = DEFAULT_CHUNK_SIZE  # Rows per flushed batch
    compression: str = DEFAULT_COMPRESSION
    compression_level: int | None = DEFAULT_COMPRESSION_LEVEL
    intensity_precision: str = FLOAT  # "float" -> float32, "integer" -> uint32
    charge_precision: str = INTEGER  # "integer" -> uint32, "float" -> float32

    # Conversion
    progress_step: float = 0.1  # Fraction of the scan range between progress messages
    instrument_index: int = 1  # MS device to select in the raw file

    def validate(self) -> None:
        check_precision("intensity precision", self.intensity_precision)
        check_precision("charge precision", self.charge_precision)
        if self.chunk_size < 1:
            raise ValueError(f"chunk_size must be positive, got {self.chunk_size}")
        if not 0 < self.progress_step <= 1:
            raise ValueError(f"progress_step must be in (0, 1], got {self.progress_step}")
        if self.instrument_index < 1:
            raise ValueError(f"instrument_index must be >= 1, got {self.instrument_index}")


@dataclass
class ConversionResult:
    """Summary of a finished conversion."""

    output_path: Path
    n_scans: int = 0
    n_rows: int = 0
    batch_sizes: list[int] = field(default_factory=list)
    rows_per_level: dict[int, int] = field(default_factory=dict)
    n_centroid_scans: int = 0
    n_simplified_scans: int = 0
    n_empty_scans: int = 0
    n_unlinked_scans: int = 0  # MSn scans with no parent-level scan before them
    elapsed_seconds: float = 0.0

    @property
    def n_flushes(self) -> int:
        return len(self.batch_sizes)


def default_output_path(input_path: Path | str) -> Path:
    """``run.raw`` -> ``run.mzparquet`` next to the input."""
    return Path(input_path).with_suffix(OUTPUT_SUFFIX)


def _progress_interval(n_scans: int, step: float) -> int:
    return max(1, math.ceil(n_scans * step))


def convert_scans(
    source: ScanSource,
    output_path: Path | str,
    config: ConversionConfig | None = None,
    writer: BatchWriter | None = None,
) -> ConversionResult:
    """Convert every scan of ``source`` into rows of ``output_path``.

    Args:
        source: Open scan source; not closed by this function
        output_path: Parquet file to create (replaced if it exists)
        config: Conversion configuration (defaults if None)
        writer: Batch writer to use instead of a ParquetChunkWriter

    Returns:
        ConversionResult with row and flush statistics

    Raises:
        SinkWriteError: If a batch cannot be written

    """
    config = config or ConversionConfig()
    config.validate()
    output_path = Path(output_path)

    if writer is None:
        schema = build_schema(
            config.intensity_precision,
            config.charge_precision,
            metadata={
                "mzparquet.version": __version__,
                "mzparquet.source": source.name,
                "mzparquet.intensity_precision": config.intensity_precision,
                "mzparquet.charge_precision": config.charge_precision,
            },
        )
        writer = ParquetChunkWriter(
            output_path,
            schema,
            compression=config.compression,
            compression_level=config.compression_level,
        )

    result = ConversionResult(output_path=output_path)
    sink = ChunkedSink(writer, chunk_size=config.chunk_size)
    resolver = PrecursorResolver(charge_precision=config.charge_precision)

    scans = source.scan_range()
    n_scans = len(scans)
    interval = _progress_interval(n_scans, config.progress_step)

    logger.info(f"Starting conversion: {source.name} -> {output_path}")
    logger.info(f"  Scans: {source.first_scan}..{source.last_scan} ({n_scans:,})")
    logger.info(f"  Chunk size: {config.chunk_size:,} rows")

    start = time.perf_counter()
    try:
        for i, scan in enumerate(scans):
            scan_filter = source.get_filter(scan)
            retention_time = source.retention_time(scan)
            peaks = extract_peaks(source, scan)
            precursor = resolver.resolve(scan, scan_filter, source.trailer(scan))

            rows = flatten_scan(
                scan,
                scan_filter.ms_level,
                retention_time,
                precursor,
                peaks,
                intensity_precision=config.intensity_precision,
            )
            sink.extend(rows)

            result.n_scans += 1
            if peaks.is_empty:
                result.n_empty_scans += 1
            elif peaks.mode is PeakMode.CENTROID:
                result.n_centroid_scans += 1
            else:
                result.n_simplified_scans += 1
            level = scan_filter.ms_level
            result.rows_per_level[level] = result.rows_per_level.get(level, 0) + len(rows)

            if (i + 1) % interval == 0 or i + 1 == n_scans:
                logger.info(f"  Processed {i + 1:,} / {n_scans:,} scans ({100 * (i + 1) // n_scans}%)")
    except Exception:
        sink.abort()
        raise
    sink.finish()

    result.batch_sizes = list(sink.batch_sizes)
    result.n_rows = sink.n_written
    result.n_unlinked_scans = resolver.n_unlinked
    result.elapsed_seconds = time.perf_counter() - start

    logger.info("=" * 60)
    logger.info(f"Finished writing to {output_path}")
    logger.info(f"  Scans: {result.n_scans:,} ({result.n_empty_scans:,} without peaks)")
    logger.info(f"  Rows: {result.n_rows:,} in {result.n_flushes} chunk(s)")
    for level in sorted(result.rows_per_level):
        logger.info(f"  MS{level}: {result.rows_per_level[level]:,} rows")
    logger.info(f"  Elapsed: {result.elapsed_seconds:.1f}s")
    logger.info("=" * 60)

    return result


def convert_raw_file(
    input_path: Path | str,
    output_path: Path | str | None = None,
    config: ConversionConfig | None = None,
) -> ConversionResult:
    """Open an acquisition file, convert it, and always close it again.

    Args:
        input_path: Acquisition file (.raw)
        output_path: Output file (defaults to the input with a .mzparquet suffix)
        config: Conversion configuration

    Returns:
        ConversionResult

    """
    config = config or ConversionConfig()
    input_path = Path(input_path)
    if output_path is None:
        output_path = default_output_path(input_path)

    with open_scan_source(input_path, instrument_index=config.instrument_index) as source:
        return convert_scans(source, output_path, config)

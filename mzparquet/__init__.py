"""
mzparquet: Thermo raw files to flat, columnar peak tables

Every peak of every scan becomes one parquet row, carrying its scan's
retention time, MS level, isolation window and resolved precursor.
"""

__version__ = "0.1.0"

from .peaks import (
    PeakMode,
    PeakSelection,
    extract_peaks,
)
from .pipeline import (
    ConversionConfig,
    ConversionResult,
    convert_raw_file,
    convert_scans,
    default_output_path,
)
from .precursor import (
    PrecursorResolver,
    PrecursorState,
    ResolvedPrecursor,
)
from .records import (
    OutputRow,
    build_schema,
    flatten_scan,
)
from .sink import (
    ChunkedSink,
    SinkState,
    SinkWriteError,
)
from .sources import (
    InMemoryScanSource,
    Reaction,
    ScanFilter,
    ScanSource,
    SourceScan,
    open_scan_source,
)
from .summary import (
    OutputSummary,
    summarize_output,
)
from .writer import (
    ParquetChunkWriter,
    WriteMode,
)

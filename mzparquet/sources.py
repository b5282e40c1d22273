"""Scan sources that feed the conversion pipeline.

A scan source gives random access, by scan index, to everything the pipeline
reads from an acquisition file:

- instrument filter metadata (MS level and the first reaction, which carries
  the precursor mass and isolation width)
- retention time in minutes
- peak lists from the two detection modes (centroid and simplified scan)
- the free-form trailer as an ordered list of (label, value) pairs

Vendor formats implement :class:`ScanSource`. :class:`InMemoryScanSource`
serves already-decoded scans and is what the test-suite drives.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from pathlib import Path

import numpy as np

logger = logging.getLogger(__name__)

EMPTY_PEAKS = (np.empty(0, dtype=np.float64), np.empty(0, dtype=np.float64))


@dataclass(frozen=True)
class Reaction:
    """One fragmentation reaction from the scan filter."""

    precursor_mass: float
    isolation_width: float


@dataclass(frozen=True)
class ScanFilter:
    """Instrument filter metadata for a single scan."""

    ms_level: int
    reactions: tuple[Reaction, ...] = ()

    def first_reaction(self) -> Reaction | None:
        """Return the first recorded reaction, or None for survey scans."""
        return self.reactions[0] if self.reactions else None


# Ordered (label, value) pairs exactly as the instrument reports them
Trailer = list[tuple[str, str]]


class ScanSource(ABC):
    """Random access to the scans of one acquisition."""

    @property
    @abstractmethod
    def first_scan(self) -> int:
        """Index of the first scan in the acquisition."""

    @property
    @abstractmethod
    def last_scan(self) -> int:
        """Index of the last scan in the acquisition (inclusive)."""

    @abstractmethod
    def get_filter(self, scan: int) -> ScanFilter:
        """Filter metadata for ``scan``."""

    @abstractmethod
    def retention_time(self, scan: int) -> float:
        """Retention time of ``scan`` in minutes."""

    @abstractmethod
    def centroid_peaks(self, scan: int) -> tuple[np.ndarray, np.ndarray]:
        """Centroided (masses, intensities) for ``scan``; may be empty."""

    @abstractmethod
    def simplified_peaks(self, scan: int) -> tuple[np.ndarray, np.ndarray]:
        """Simplified scan (masses, intensities) for ``scan``; may be empty."""

    @abstractmethod
    def trailer(self, scan: int) -> Trailer:
        """Trailer label/value pairs for ``scan`` in instrument order."""

    @property
    def name(self) -> str:
        return type(self).__name__

    @property
    def n_scans(self) -> int:
        return max(self.last_scan - self.first_scan + 1, 0)

    def scan_range(self) -> range:
        """All scan indices in increasing order."""
        return range(self.first_scan, self.last_scan + 1)

    def close(self) -> None:
        """Release any underlying file handle."""

    def __enter__(self) -> ScanSource:
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()


@dataclass
class SourceScan:
    """A fully decoded scan held in memory."""

    scan: int
    ms_level: int
    retention_time: float
    centroid_mz: np.ndarray = field(default_factory=lambda: EMPTY_PEAKS[0])
    centroid_intensity: np.ndarray = field(default_factory=lambda: EMPTY_PEAKS[1])
    simplified_mz: np.ndarray = field(default_factory=lambda: EMPTY_PEAKS[0])
    simplified_intensity: np.ndarray = field(default_factory=lambda: EMPTY_PEAKS[1])
    reactions: tuple[Reaction, ...] = ()
    trailer: Trailer = field(default_factory=list)

    def __post_init__(self):
        self.centroid_mz = np.asarray(self.centroid_mz, dtype=np.float64)
        self.centroid_intensity = np.asarray(self.centroid_intensity, dtype=np.float64)
        self.simplified_mz = np.asarray(self.simplified_mz, dtype=np.float64)
        self.simplified_intensity = np.asarray(self.simplified_intensity, dtype=np.float64)
        if len(self.centroid_mz) != len(self.centroid_intensity):
            raise ValueError(f"Scan {self.scan}: centroid masses and intensities differ in length")
        if len(self.simplified_mz) != len(self.simplified_intensity):
            raise ValueError(f"Scan {self.scan}: simplified masses and intensities differ in length")


class InMemoryScanSource(ScanSource):
    """Scan source over a list of :class:`SourceScan` records.

    Scan indices must be contiguous and increasing, as they are in a raw file.
    """

    def __init__(self, scans: list[SourceScan], name: str = "memory"):
        self._scans = {s.scan: s for s in scans}
        if len(self._scans) != len(scans):
            raise ValueError("Duplicate scan indices in scan list")
        self._name = name
        if scans:
            self._first = min(self._scans)
            self._last = max(self._scans)
            missing = set(range(self._first, self._last + 1)) - set(self._scans)
            if missing:
                raise ValueError(f"Scan indices are not contiguous, missing: {sorted(missing)[:10]}")
        else:
            # Empty acquisition: an empty inclusive range
            self._first, self._last = 1, 0

    @property
    def name(self) -> str:
        return self._name

    @property
    def first_scan(self) -> int:
        return self._first

    @property
    def last_scan(self) -> int:
        return self._last

    def _get(self, scan: int) -> SourceScan:
        try:
            return self._scans[scan]
        except KeyError:
            raise IndexError(f"Scan {scan} is outside {self._first}..{self._last}") from None

    def get_filter(self, scan: int) -> ScanFilter:
        s = self._get(scan)
        return ScanFilter(ms_level=s.ms_level, reactions=tuple(s.reactions))

    def retention_time(self, scan: int) -> float:
        return self._get(scan).retention_time

    def centroid_peaks(self, scan: int) -> tuple[np.ndarray, np.ndarray]:
        s = self._get(scan)
        return s.centroid_mz, s.centroid_intensity

    def simplified_peaks(self, scan: int) -> tuple[np.ndarray, np.ndarray]:
        s = self._get(scan)
        return s.simplified_mz, s.simplified_intensity

    def trailer(self, scan: int) -> Trailer:
        return list(self._get(scan).trailer)


def open_scan_source(path: Path | str, instrument_index: int = 1) -> ScanSource:
    """Open a scan source for ``path``, choosing the reader by extension.

    Args:
        path: Path to the acquisition file
        instrument_index: MS device index to select (vendor files with several devices)

    Returns:
        An open ScanSource; callers are responsible for closing it

    Raises:
        FileNotFoundError: If the file does not exist
        ValueError: If the file format is not recognized

    """
    path = Path(path)

    if not path.exists():
        raise FileNotFoundError(f"Acquisition file not found: {path}")

    suffix = path.suffix.lower()

    if suffix == ".raw":
        from .thermo import ThermoRawSource

        return ThermoRawSource(path, instrument_index=instrument_index)

    raise ValueError(
        f"Unknown acquisition file format: {suffix}. "
        f"Supported formats: .raw (Thermo)"
    )

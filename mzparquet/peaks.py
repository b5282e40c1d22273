"""Peak extraction: pick the peak list that gets written for a scan."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum

import numpy as np

from .sources import ScanSource

logger = logging.getLogger(__name__)


class PeakMode(Enum):
    """Which detection mode produced a peak list."""

    CENTROID = "centroid"
    SIMPLIFIED = "simplified"


@dataclass(frozen=True)
class PeakSelection:
    """The peak list chosen for one scan, tagged with its mode."""

    mode: PeakMode
    masses: np.ndarray
    intensities: np.ndarray

    def __len__(self) -> int:
        return len(self.masses)

    @property
    def is_empty(self) -> bool:
        return len(self.masses) == 0


def extract_peaks(source: ScanSource, scan: int) -> PeakSelection:
    """Return the centroid peak list, or the simplified scan when it is empty.

    The two lists are never merged. Both being empty is valid and yields an
    empty selection tagged SIMPLIFIED.

    Args:
        source: Scan source to read from
        scan: Scan index

    Returns:
        PeakSelection with equal-length masses and intensities

    """
    masses, intensities = source.centroid_peaks(scan)
    mode = PeakMode.CENTROID

    if len(masses) == 0:
        logger.debug(f"Scan {scan}: no centroids, using simplified scan")
        masses, intensities = source.simplified_peaks(scan)
        mode = PeakMode.SIMPLIFIED

    masses = np.asarray(masses, dtype=np.float64)
    intensities = np.asarray(intensities, dtype=np.float64)
    if len(masses) != len(intensities):
        raise ValueError(
            f"Scan {scan}: {mode.value} peak list has {len(masses)} masses "
            f"but {len(intensities)} intensities"
        )

    return PeakSelection(mode=mode, masses=masses, intensities=intensities)

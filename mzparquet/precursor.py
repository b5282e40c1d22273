"""Precursor resolution for product-ion scans.

For every scan above MS level 1 this works out the isolation window, the
precursor m/z, the precursor charge and the scan the precursor was selected
from. Values come from three places, later ones taking precedence:

1. the first reaction of the instrument filter (isolation centre and width)
2. the most recent scan seen at the parent MS level
3. trailer entries ("Monoisotopic M/Z", "Master Scan", "Charge")

A trailer value of zero means "unknown" to the instrument and never
overrides anything; neither does a value that fails to parse.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass

from .precision import FLOAT, FLOAT32_MAX, INTEGER, UINT32_MAX, check_precision, narrow_float
from .sources import ScanFilter, Trailer

logger = logging.getLogger(__name__)

MONOISOTOPIC_MZ_LABEL = "Monoisotopic M/Z"
MASTER_SCAN_LABEL = "Master Scan"
CHARGE_LABEL = "Charge"


class PrecursorState:
    """Most recent scan index seen at each MS level.

    Indexed by MS level; MS levels are small so a list is enough.
    """

    def __init__(self):
        self._last_scan: list[int | None] = []

    def get(self, level: int) -> int | None:
        """Last scan seen at ``level``, or None if no such scan yet."""
        if 0 <= level < len(self._last_scan):
            return self._last_scan[level]
        return None

    def record(self, level: int, scan: int) -> None:
        if level < 0:
            raise ValueError(f"MS level must be non-negative, got {level}")
        if level >= len(self._last_scan):
            self._last_scan.extend([None] * (level + 1 - len(self._last_scan)))
        self._last_scan[level] = scan

    def as_dict(self) -> dict[int, int]:
        return {level: scan for level, scan in enumerate(self._last_scan) if scan is not None}

    def __len__(self) -> int:
        return len(self.as_dict())

    def __repr__(self) -> str:
        return f"PrecursorState({self.as_dict()})"


@dataclass(frozen=True)
class ResolvedPrecursor:
    """Scan-level precursor attributes; None means absent."""

    isolation_lower: float | None = None
    isolation_upper: float | None = None
    precursor_scan: int | None = None
    precursor_mz: float | None = None
    precursor_charge: int | float | None = None


NO_PRECURSOR = ResolvedPrecursor()


def _parse_positive(text: str, kind: type, label: str, scan: int):
    """Parse a trailer value, returning None for non-positive or malformed values.

    Values that cannot be stored in the output column (above uint32 for
    integers, non-finite or beyond float32 for floats) are treated as malformed.
    """
    try:
        value = kind(text)
    except (TypeError, ValueError, OverflowError):
        logger.debug(f"Scan {scan}: ignoring unparseable trailer value {label!r}={text!r}")
        return None
    if not value > 0:
        return None
    limit = UINT32_MAX if kind is int else FLOAT32_MAX
    if value > limit or not math.isfinite(value):
        logger.debug(f"Scan {scan}: ignoring out-of-range trailer value {label!r}={text!r}")
        return None
    return value


class PrecursorResolver:
    """Resolves precursor attributes scan by scan, carrying per-level state.

    Scans must be passed in increasing scan order; the resolver records each
    scan under its own MS level only after resolving it, so a scan never
    resolves to itself.
    """

    def __init__(self, charge_precision: str = INTEGER):
        self.charge_precision = check_precision("charge precision", charge_precision)
        self.state = PrecursorState()
        self.n_unlinked = 0

    def resolve(self, scan: int, scan_filter: ScanFilter, trailer: Trailer) -> ResolvedPrecursor:
        level = scan_filter.ms_level

        if level <= 1:
            self.state.record(level, scan)
            return NO_PRECURSOR

        isolation_lower = isolation_upper = precursor_mz = None
        precursor_scan = None
        precursor_charge = None

        reaction = scan_filter.first_reaction()
        if reaction is not None:
            half_width = reaction.isolation_width / 2
            isolation_lower = narrow_float(reaction.precursor_mass - half_width)
            isolation_upper = narrow_float(reaction.precursor_mass + half_width)
            precursor_mz = narrow_float(reaction.precursor_mass)
        else:
            logger.debug(f"Scan {scan}: MS{level} scan without a reaction")

        precursor_scan = self.state.get(level - 1)
        if precursor_scan is None:
            self.n_unlinked += 1
            logger.debug(f"Scan {scan}: no MS{level - 1} scan seen yet")

        charge_kind = int if self.charge_precision == INTEGER else float

        for label, text in trailer:
            if label.startswith(MONOISOTOPIC_MZ_LABEL):
                value = _parse_positive(text, float, label, scan)
                if value is not None:
                    precursor_mz = narrow_float(value)
            elif label.startswith(MASTER_SCAN_LABEL):
                value = _parse_positive(text, int, label, scan)
                if value is not None:
                    precursor_scan = value
            elif label.startswith(CHARGE_LABEL):
                value = _parse_positive(text, charge_kind, label, scan)
                if value is not None:
                    precursor_charge = narrow_float(value) if self.charge_precision == FLOAT else value

        self.state.record(level, scan)

        return ResolvedPrecursor(
            isolation_lower=isolation_lower,
            isolation_upper=isolation_upper,
            precursor_scan=precursor_scan,
            precursor_mz=precursor_mz,
            precursor_charge=precursor_charge,
        )

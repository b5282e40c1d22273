"""Thermo Fisher RAW file scan source.

Reads scans through Thermo's RawFileReader .NET assemblies via ``pythonnet``.
The assemblies are not redistributed with this package; point
``MZPARQUET_THERMO_DLL_DIR`` at the folder holding
``ThermoFisher.CommonCore.Data.dll`` and ``ThermoFisher.CommonCore.RawFileReader.dll``
or drop them into ``mzparquet/lib``.
"""

from __future__ import annotations

import logging
import os
import sys
from pathlib import Path

import numpy as np

from .sources import Reaction, ScanFilter, ScanSource, Trailer

logger = logging.getLogger(__name__)

DLL_DIR_ENV = "MZPARQUET_THERMO_DLL_DIR"
_DEFAULT_DLL_DIR = Path(__file__).parent / "lib"

# .NET namespaces, populated by _load_assemblies()
_RawFileReaderAdapter = None
_Device = None


class RawFileOpenError(RuntimeError):
    """A RAW file (or the runtime needed to read it) could not be opened."""


def _dll_search_paths() -> list[Path]:
    paths = []
    if os.environ.get(DLL_DIR_ENV):
        paths.append(Path(os.environ[DLL_DIR_ENV]))
    paths.append(_DEFAULT_DLL_DIR)
    return paths


def _load_assemblies() -> None:
    """Start the CLR and import the RawFileReader entry points once per process."""
    global _RawFileReaderAdapter, _Device

    if _RawFileReaderAdapter is not None:
        return

    try:
        from pythonnet import load

        load("coreclr")
        import clr
    except (ImportError, RuntimeError) as e:
        raise RawFileOpenError(
            f"Reading .raw files requires pythonnet and a .NET runtime: {e}"
        ) from e

    errors = []
    for path in _dll_search_paths():
        if str(path) not in sys.path:
            sys.path.append(str(path))
        try:
            clr.AddReference("ThermoFisher.CommonCore.Data")
            clr.AddReference("ThermoFisher.CommonCore.RawFileReader")
        except Exception as e:  # System.IO.FileNotFoundException surfaces as a .NET exception
            errors.append(f"{path}: {e}")
            continue

        from ThermoFisher.CommonCore.Data.Business import Device
        from ThermoFisher.CommonCore.RawFileReader import RawFileReaderAdapter

        _RawFileReaderAdapter = RawFileReaderAdapter
        _Device = Device
        logger.debug(f"Loaded ThermoFisher.CommonCore assemblies from {path}")
        return

    raise RawFileOpenError(
        "The ThermoFisher.CommonCore assemblies could not be located. "
        f"Set {DLL_DIR_ENV} to the folder containing them. Tried: {'; '.join(errors)}"
    )


def _to_numpy(arr) -> np.ndarray:
    """Copy a .NET double array into a float64 numpy array."""
    if arr is None:
        return np.empty(0, dtype=np.float64)
    length = arr.Length if hasattr(arr, "Length") else len(arr)
    if length == 0:
        return np.empty(0, dtype=np.float64)
    return np.fromiter(arr, dtype=np.float64, count=length)


class ThermoRawSource(ScanSource):
    """Scan source over a Thermo ``.raw`` acquisition."""

    def __init__(self, path: Path | str, instrument_index: int = 1):
        self.path = Path(path)
        _load_assemblies()

        raw = _RawFileReaderAdapter.FileFactory(str(self.path))
        if raw is None or not raw.IsOpen:
            raise RawFileOpenError(f"Failed to open {self.path}")
        if raw.IsError:
            message = raw.FileError.ErrorMessage
            raw.Dispose()
            raise RawFileOpenError(f"Cannot read {self.path}: {message}")
        if raw.InAcquisition:
            raw.Dispose()
            raise RawFileOpenError(f"{self.path} is still being acquired")

        try:
            raw.SelectInstrument(_Device.MS, instrument_index)
        except Exception as e:
            raw.Dispose()
            raise RawFileOpenError(
                f"{self.path} has no MS device #{instrument_index}: {e}"
            ) from e

        self._raw = raw
        self._first = int(raw.RunHeaderEx.FirstSpectrum)
        self._last = int(raw.RunHeaderEx.LastSpectrum)
        logger.info(f"Opened {self.path.name}: scans {self._first}..{self._last}")

    @property
    def name(self) -> str:
        return self.path.name

    @property
    def first_scan(self) -> int:
        return self._first

    @property
    def last_scan(self) -> int:
        return self._last

    def get_filter(self, scan: int) -> ScanFilter:
        f = self._raw.GetFilterForScanNumber(scan)
        ms_level = int(f.MSOrder)
        reactions = ()
        if ms_level > 1:
            rx = f.GetReaction(0)
            reactions = (Reaction(float(rx.PrecursorMass), float(rx.IsolationWidth)),)
        return ScanFilter(ms_level=ms_level, reactions=reactions)

    def retention_time(self, scan: int) -> float:
        return float(self._raw.RetentionTimeFromScanNumber(scan))

    def centroid_peaks(self, scan: int) -> tuple[np.ndarray, np.ndarray]:
        cs = self._raw.GetSimplifiedCentroids(scan)
        return _to_numpy(cs.Masses), _to_numpy(cs.Intensities)

    def simplified_peaks(self, scan: int) -> tuple[np.ndarray, np.ndarray]:
        ss = self._raw.GetSimplifiedScan(scan)
        return _to_numpy(ss.Masses), _to_numpy(ss.Intensities)

    def trailer(self, scan: int) -> Trailer:
        info = self._raw.GetTrailerExtraInformation(scan)
        return [(str(info.Labels[i]), str(info.Values[i])) for i in range(info.Length)]

    def close(self) -> None:
        if self._raw is not None:
            self._raw.Dispose()
            self._raw = None

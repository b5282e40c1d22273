"""Bounded-memory row buffer that flushes fixed-size batches to a writer."""

from __future__ import annotations

import logging
from collections.abc import Iterable
from enum import Enum
from pathlib import Path
from typing import Protocol

import pyarrow as pa

from .records import OutputRow, rows_to_table
from .writer import WriteMode

logger = logging.getLogger(__name__)

DEFAULT_CHUNK_SIZE = 1_048_576


class SinkState(Enum):
    """Creating until the first batch lands, then Appending for good."""

    CREATING = "creating"
    APPENDING = "appending"


class BatchWriter(Protocol):
    path: Path
    schema: pa.Schema

    def write_batch(self, table: pa.Table, mode: WriteMode) -> None: ...

    def close(self) -> None: ...


class SinkWriteError(RuntimeError):
    """A batch could not be written; the conversion cannot continue."""

    def __init__(self, path: Path, lost_rows: int, flushes_completed: int, cause: BaseException):
        self.path = path
        self.lost_rows = lost_rows
        self.flushes_completed = flushes_completed
        self.cause = cause
        super().__init__(
            f"Failed writing to {path}: {cause}. "
            f"{lost_rows:,} buffered rows were lost; "
            f"the file holds the {flushes_completed} batch(es) written before the failure"
        )


class ChunkedSink:
    """Accumulates rows and hands them to ``writer`` every ``chunk_size`` rows.

    The first flush creates the output file, every later flush appends to it.
    A write failure closes the writer and raises :class:`SinkWriteError`;
    the file keeps the batches that were completed before it.
    """

    def __init__(self, writer: BatchWriter, chunk_size: int = DEFAULT_CHUNK_SIZE):
        if chunk_size < 1:
            raise ValueError(f"chunk_size must be positive, got {chunk_size}")
        self.writer = writer
        self.chunk_size = chunk_size
        self.state = SinkState.CREATING
        self.batch_sizes: list[int] = []
        self.lost_rows = 0
        self._buffer: list[OutputRow] = []
        self._finished = False
        self._failed = False

    @property
    def n_buffered(self) -> int:
        return len(self._buffer)

    @property
    def n_flushes(self) -> int:
        return len(self.batch_sizes)

    @property
    def n_written(self) -> int:
        return sum(self.batch_sizes)

    def push(self, row: OutputRow) -> None:
        self._check_open()
        self._buffer.append(row)
        if len(self._buffer) >= self.chunk_size:
            self._flush()

    def extend(self, rows: Iterable[OutputRow]) -> None:
        """Push every row in order; batch boundaries fall exactly on chunk_size."""
        for row in rows:
            self.push(row)

    def finish(self) -> None:
        """Flush any remaining rows and close the writer. Runs once."""
        if self._finished:
            return
        self._finished = True
        try:
            if self._buffer and not self._failed:
                self._flush()
        finally:
            self.writer.close()

    def abort(self) -> int:
        """Drop buffered rows after an upstream failure; returns how many were lost."""
        lost = len(self._buffer)
        if lost:
            logger.error(f"Conversion aborted: {lost:,} buffered rows were not written")
        self.lost_rows += lost
        self._buffer.clear()
        self._failed = True
        self.finish()
        return lost

    def _check_open(self) -> None:
        if self._finished:
            raise RuntimeError("Cannot push rows to a finished sink")

    def _flush(self) -> None:
        n_rows = len(self._buffer)
        mode = WriteMode.CREATE if self.state is SinkState.CREATING else WriteMode.APPEND
        logger.info(f"Writing chunk {self.n_flushes + 1}: {n_rows:,} rows ({mode.value})")

        # Conversion errors here are data bugs, not storage failures
        table = rows_to_table(self._buffer, self.writer.schema)

        try:
            self.writer.write_batch(table, mode)
        except (OSError, ValueError, pa.ArrowException) as e:
            self.lost_rows += n_rows
            self._buffer.clear()
            self._failed = True
            self._finished = True
            logger.error(f"Write to {self.writer.path} failed, {n_rows:,} rows lost: {e}")
            try:
                self.writer.close()
            except (OSError, ValueError, pa.ArrowException) as close_error:
                logger.error(f"Closing {self.writer.path} after failure also failed: {close_error}")
            raise SinkWriteError(self.writer.path, n_rows, self.n_flushes, e) from e

        self.batch_sizes.append(n_rows)
        self._buffer.clear()
        self.state = SinkState.APPENDING

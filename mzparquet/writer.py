"""Parquet writer that takes rows in batches, one row group per batch."""

from __future__ import annotations

import logging
import os
import shutil
from enum import Enum
from pathlib import Path

import pyarrow as pa
import pyarrow.parquet as pq

logger = logging.getLogger(__name__)

DEFAULT_COMPRESSION = "zstd"
DEFAULT_COMPRESSION_LEVEL = 1  # fastest zstd level

SPOOL_SUFFIX = ".chunks"
PARTIAL_SUFFIX = ".partial"


class WriteMode(Enum):
    CREATE = "create"
    APPEND = "append"


class ParquetChunkWriter:
    """Writes arrow tables to a single parquet file.

    Every batch is first committed as its own small parquet file in a spool
    directory beside ``path``: written under a ``.partial`` name, then renamed.
    ``close()`` streams the committed batches, one row group at a time, into
    a temporary sibling of ``path`` and renames that over ``path``. A batch
    that fails half-way never reaches the spool, so the assembled file holds
    exactly the batches that completed. Peak disk use is about twice the
    output size; memory use is one row group.

    ``CREATE`` discards ``path`` and anything pending. ``APPEND`` adds a
    batch; if ``path`` exists from an earlier run its row groups are carried
    over, again one at a time, ahead of the new batches.
    """

    def __init__(
        self,
        path: Path | str,
        schema: pa.Schema,
        compression: str = DEFAULT_COMPRESSION,
        compression_level: int | None = DEFAULT_COMPRESSION_LEVEL,
    ):
        self.path = Path(path)
        self.schema = schema
        self.compression = compression
        self.compression_level = compression_level
        self.spool_dir = self.path.with_name(self.path.name + SPOOL_SUFFIX)
        self._chunks: list[Path] = []
        self._carry_existing = False
        self._active = False
        self.n_batches = 0
        self.n_rows = 0

    @property
    def is_open(self) -> bool:
        return self._active

    def _discard_spool(self) -> None:
        if self.spool_dir.exists():
            shutil.rmtree(self.spool_dir)

    def _start(self, carry_existing: bool) -> None:
        self._discard_spool()
        self.spool_dir.mkdir(parents=True)
        self._chunks = []
        self._carry_existing = carry_existing
        self._active = True

    def _check_existing(self) -> None:
        existing = pq.ParquetFile(self.path)
        try:
            schema = existing.schema_arrow
        finally:
            existing.close()
        if not schema.equals(self.schema, check_metadata=False):
            raise ValueError(
                f"Cannot append to {self.path}: schema differs from the output schema"
            )

    def write_batch(self, table: pa.Table, mode: WriteMode) -> None:
        """Commit ``table`` as one row group.

        Args:
            table: Batch to write; must match the writer's schema
            mode: CREATE to start the file, APPEND to extend it

        Raises:
            ValueError: If the batch or an existing file has a different schema
            OSError: If the batch cannot be committed; nothing of it is kept

        """
        if not table.schema.equals(self.schema, check_metadata=False):
            raise ValueError(f"Batch schema does not match the output schema of {self.path}")

        if mode is WriteMode.CREATE:
            self.path.unlink(missing_ok=True)
            self._start(carry_existing=False)
        elif not self._active:
            carry = self.path.exists()
            if carry:
                self._check_existing()
                logger.debug(f"Appending to existing {self.path}")
            self._start(carry_existing=carry)

        chunk = self.spool_dir / f"chunk-{len(self._chunks) + 1:06d}.parquet"
        partial = chunk.with_name(chunk.name + PARTIAL_SUFFIX)
        try:
            pq.write_table(
                table,
                partial,
                compression=self.compression,
                compression_level=self.compression_level,
                row_group_size=max(table.num_rows, 1),
            )
            os.replace(partial, chunk)
        except Exception:
            partial.unlink(missing_ok=True)
            raise

        self._chunks.append(chunk)
        self.n_batches += 1
        self.n_rows += table.num_rows

    def close(self) -> None:
        """Assemble the committed batches into ``path``. Safe to call more than once.

        If assembly fails the spool directory is left in place with every
        committed batch, and the error propagates.
        """
        if not self._active:
            return
        self._active = False

        sources = ([self.path] if self._carry_existing else []) + self._chunks
        if not sources:
            self._discard_spool()
            logger.debug(f"No batches committed; {self.path} was not written")
            return

        assembled = self.path.with_name(self.path.name + PARTIAL_SUFFIX)
        try:
            with pq.ParquetWriter(
                assembled,
                self.schema,
                compression=self.compression,
                compression_level=self.compression_level,
            ) as writer:
                for source in sources:
                    pf = pq.ParquetFile(source)
                    try:
                        for i in range(pf.num_row_groups):
                            row_group = pf.read_row_group(i)
                            writer.write_table(row_group, row_group_size=max(row_group.num_rows, 1))
                    finally:
                        pf.close()
            os.replace(assembled, self.path)
        except Exception:
            assembled.unlink(missing_ok=True)
            logger.error(f"Could not assemble {self.path}; committed batches remain in {self.spool_dir}")
            raise

        self._discard_spool()
        logger.debug(f"Assembled {len(self._chunks)} batch(es) into {self.path}")

    def __enter__(self) -> ParquetChunkWriter:
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

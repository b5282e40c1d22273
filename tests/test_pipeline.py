"""End-to-end tests for the conversion pipeline."""

import hashlib
import logging

import pandas as pd
import pyarrow.parquet as pq
import pytest

from mzparquet.pipeline import ConversionConfig, convert_scans, default_output_path
from mzparquet.sink import SinkWriteError
from mzparquet.sources import InMemoryScanSource, Reaction, SourceScan
from mzparquet.summary import summarize_output


def ms1(scan, rt, n_peaks=2):
    return SourceScan(
        scan, 1, rt,
        centroid_mz=[400.0 + i for i in range(n_peaks)],
        centroid_intensity=[1000.0 * (i + 1) for i in range(n_peaks)],
    )


def ms2(scan, rt, mass=500.0, width=2.0, trailer=None, n_peaks=3, centroid=True):
    mz = [100.0 + 10 * i for i in range(n_peaks)]
    intensity = [50.0 + i for i in range(n_peaks)]
    kwargs = {"centroid_mz": mz, "centroid_intensity": intensity} if centroid else {
        "simplified_mz": mz, "simplified_intensity": intensity}
    return SourceScan(
        scan, 2, rt,
        reactions=(Reaction(mass, width),),
        trailer=trailer or [],
        **kwargs,
    )


@pytest.fixture
def source():
    return InMemoryScanSource([
        ms1(10, 1.00),
        ms2(11, 1.01),
        ms2(12, 1.02, mass=600.0, trailer=[("Monoisotopic M/Z:", "601.2345"), ("Charge State:", "2")]),
        ms2(13, 1.03, trailer=[("Master Scan Number:", "7")], centroid=False),
        SourceScan(14, 2, 1.04, reactions=(Reaction(700.0, 4.0),)),  # no peaks
        ms1(15, 1.05, n_peaks=1),
        ms2(16, 1.06, trailer=[("Charge State:", "0")]),
    ], name="test.raw")


class TestConvertScans:
    """Full runs over an in-memory source."""

    def test_row_counts(self, source, tmp_path):
        result = convert_scans(source, tmp_path / "out.mzparquet")

        assert result.n_scans == 7
        assert result.n_rows == 2 + 3 + 3 + 3 + 0 + 1 + 3
        assert result.n_empty_scans == 1
        assert result.n_simplified_scans == 1
        assert result.n_centroid_scans == 5
        assert result.rows_per_level == {1: 3, 2: 12}
        assert result.batch_sizes == [15]

    def test_scan_order(self, source, tmp_path):
        path = tmp_path / "out.mzparquet"
        convert_scans(source, path)
        df = pd.read_parquet(path)
        assert df["scan"].tolist() == [10, 10, 11, 11, 11, 12, 12, 12, 13, 13, 13, 15, 16, 16, 16]
        assert df[df["scan"] == 11]["mz"].tolist() == [100.0, 110.0, 120.0]

    def test_precursor_columns(self, source, tmp_path):
        path = tmp_path / "out.mzparquet"
        convert_scans(source, path)
        df = pd.read_parquet(path)

        ms1_rows = df[df["level"] == 1]
        for col in ["isolation_lower", "isolation_upper", "precursor_scan", "precursor_mz", "precursor_charge"]:
            assert ms1_rows[col].isna().all()
        assert df["ion_mobility"].isna().all()

        scan11 = df[df["scan"] == 11].iloc[0]
        assert scan11["isolation_lower"] == 499.0
        assert scan11["isolation_upper"] == 501.0
        assert scan11["precursor_mz"] == 500.0
        assert scan11["precursor_scan"] == 10
        assert pd.isna(scan11["precursor_charge"])

        scan12 = df[df["scan"] == 12].iloc[0]
        assert scan12["precursor_mz"] == pytest.approx(601.2345, abs=1e-4)
        assert scan12["isolation_lower"] == 599.0
        assert scan12["precursor_charge"] == 2

        scan13 = df[df["scan"] == 13].iloc[0]
        assert scan13["precursor_scan"] == 7

        scan16 = df[df["scan"] == 16].iloc[0]
        assert scan16["precursor_scan"] == 15
        assert pd.isna(scan16["precursor_charge"])

    def test_chunk_boundaries(self, source, tmp_path):
        path = tmp_path / "out.mzparquet"
        result = convert_scans(source, path, ConversionConfig(chunk_size=4))
        assert result.batch_sizes == [4, 4, 4, 3]

        summary = summarize_output(path)
        assert summary.n_rows == 15
        assert summary.rows_per_group == [4, 4, 4, 3]
        assert summary.scans_ordered

    def test_repeat_runs_identical(self, source, tmp_path):
        config = ConversionConfig(chunk_size=5)
        first = convert_scans(source, tmp_path / "a.mzparquet", config)
        second = convert_scans(source, tmp_path / "b.mzparquet", config)
        assert first.batch_sizes == second.batch_sizes

        digest = [
            hashlib.sha256(pd.read_parquet(p).to_csv(index=False).encode()).hexdigest()
            for p in (tmp_path / "a.mzparquet", tmp_path / "b.mzparquet")
        ]
        assert digest[0] == digest[1]

    def test_integer_precision(self, source, tmp_path):
        path = tmp_path / "out.mzparquet"
        convert_scans(source, path, ConversionConfig(intensity_precision="integer"))
        schema = pq.read_schema(path)
        assert str(schema.field("intensity").type) == "uint32"
        df = pd.read_parquet(path)
        assert df[df["scan"] == 10]["intensity"].tolist() == [1000, 2000]

    def test_file_metadata(self, source, tmp_path):
        path = tmp_path / "out.mzparquet"
        convert_scans(source, path)
        summary = summarize_output(path)
        assert summary.metadata["mzparquet.source"] == "test.raw"
        assert summary.metadata["mzparquet.intensity_precision"] == "float"

    def test_empty_source(self, tmp_path):
        path = tmp_path / "out.mzparquet"
        result = convert_scans(InMemoryScanSource([]), path)
        assert result.n_rows == 0
        assert result.batch_sizes == []
        assert not path.exists()

    def test_progress_logging(self, source, tmp_path, caplog):
        with caplog.at_level(logging.INFO, logger="mzparquet.pipeline"):
            convert_scans(source, tmp_path / "out.mzparquet", ConversionConfig(progress_step=0.5))
        progress = [r for r in caplog.records if "Processed" in r.getMessage()]
        assert len(progress) == 2

    def test_invalid_config(self, source, tmp_path):
        with pytest.raises(ValueError):
            convert_scans(source, tmp_path / "out.mzparquet", ConversionConfig(progress_step=0))


class FailingWriter:
    """Writer that fails on its second batch."""

    def __init__(self, schema, path):
        self.schema = schema
        self.path = path
        self.batches = []
        self.closed = False

    def write_batch(self, table, mode):
        if self.batches:
            raise PermissionError(13, "Permission denied")
        self.batches.append(table.num_rows)

    def close(self):
        self.closed = True


class TestFailures:
    """Sink failures abort the run."""

    def test_write_failure_aborts(self, source, tmp_path):
        from mzparquet.records import build_schema

        writer = FailingWriter(build_schema(), tmp_path / "out.mzparquet")
        with pytest.raises(SinkWriteError) as excinfo:
            convert_scans(source, writer.path, ConversionConfig(chunk_size=4), writer=writer)
        assert excinfo.value.lost_rows == 4
        assert writer.batches == [4]
        assert writer.closed

    def test_source_failure_closes_writer(self, tmp_path):
        class BrokenSource(InMemoryScanSource):
            def trailer(self, scan):
                if scan == 2:
                    raise RuntimeError("corrupt trailer")
                return super().trailer(scan)

        source = BrokenSource([ms1(1, 0.1), ms1(2, 0.2)])
        path = tmp_path / "out.mzparquet"
        with pytest.raises(RuntimeError, match="corrupt trailer"):
            convert_scans(source, path, ConversionConfig(chunk_size=10))
        assert not path.exists()

    def test_failed_flush_keeps_earlier_batches(self, source, tmp_path, monkeypatch):
        real_write_table = pq.write_table
        calls = []

        def write_table(table, where, **kwargs):
            calls.append(table.num_rows)
            if len(calls) == 2:
                with open(where, "wb") as f:
                    f.write(b"PAR1 half a row group")
                raise OSError(28, "No space left on device")
            return real_write_table(table, where, **kwargs)

        monkeypatch.setattr(pq, "write_table", write_table)
        path = tmp_path / "out.mzparquet"
        with pytest.raises(SinkWriteError) as excinfo:
            convert_scans(source, path, ConversionConfig(chunk_size=4))

        assert excinfo.value.flushes_completed == 1
        df = pd.read_parquet(path)
        assert len(df) == 4
        assert df["scan"].tolist() == [10, 10, 11, 11]
        assert sorted(p.name for p in tmp_path.iterdir()) == ["out.mzparquet"]


class TestDefaultOutputPath:
    def test_replaces_extension(self, tmp_path):
        assert default_output_path(tmp_path / "run.raw") == tmp_path / "run.mzparquet"
        assert default_output_path("data/run.RAW").name == "run.mzparquet"


class TestOversizedTrailerValues:
    """Trailer values too large for their column fall back to the filter and state."""

    @pytest.mark.parametrize("trailer", [
        [("Master Scan Number:", "4294967296")],
        [("Charge State:", "99999999999")],
        [("Monoisotopic M/Z:", "inf")],
    ])
    def test_run_completes(self, tmp_path, trailer):
        source = InMemoryScanSource([ms1(1, 0.1), ms2(2, 0.2, trailer=trailer), ms1(3, 0.3)])
        path = tmp_path / "out.mzparquet"
        result = convert_scans(source, path)

        df = pd.read_parquet(path)
        assert result.n_rows == len(df) == 2 + 3 + 2
        product = df[df["level"] == 2]
        assert (product["precursor_scan"] == 1).all()
        assert (product["precursor_mz"] == 500.0).all()
        assert product["precursor_charge"].isna().all()

"""Tests for dicom_catalog/jobs.py."""

import re

import numpy as np
import pydicom
import pytest
from pydicom.dataset import FileDataset
from pydicom.uid import ExplicitVRLittleEndian

from dicom_catalog import jobs
from dicom_catalog.header_tree import HeaderNode
from dicom_catalog.jobs import (
    ErrorMessage,
    JobRunner,
    ProgressMessage,
    ResultMessage,
    new_job_id,
)
from dicom_catalog.options import ScanOptions
from dicom_catalog.tag_dictionary import TagDictionary

TIMEOUT = 30


def _write_dicom(path: str, instance_number: int = 1) -> None:
    """Write a minimal indexed CT slice."""
    file_meta = pydicom.Dataset()
    file_meta.MediaStorageSOPClassUID = pydicom.uid.UID("1.2.840.10008.5.1.4.1.1.2")
    file_meta.MediaStorageSOPInstanceUID = pydicom.uid.generate_uid()
    file_meta.TransferSyntaxUID = ExplicitVRLittleEndian

    ds = FileDataset(path, {}, file_meta=file_meta, preamble=b"\0" * 128)
    ds.PatientName = "Doe^John"
    ds.PatientID = "12345"
    ds.StudyInstanceUID = "1.2.3"
    ds.SeriesInstanceUID = "1.2.3.4"
    ds.SOPInstanceUID = file_meta.MediaStorageSOPInstanceUID
    ds.Modality = "CT"
    ds.InstanceNumber = instance_number
    ds.Rows = 4
    ds.Columns = 4
    ds.SamplesPerPixel = 1
    ds.PhotometricInterpretation = "MONOCHROME2"
    ds.PixelRepresentation = 0
    ds.BitsAllocated = 16
    ds.BitsStored = 16
    ds.HighBit = 15
    ds.PixelData = np.zeros((4, 4), dtype=np.uint16).tobytes()
    ds.save_as(path)


@pytest.fixture
def runner():
    with JobRunner(max_workers=2, dictionary=TagDictionary()) as r:
        yield r


class TestJobIds:
    def test_format(self):
        assert re.fullmatch(r"job_\d+_[0-9a-f]{6}", new_job_id())
        assert re.fullmatch(r"headers_\d+_[0-9a-f]{6}", new_job_id("headers"))

    def test_unique(self):
        assert len({new_job_id() for _ in range(50)}) == 50


class TestScanJobs:
    def test_progress_then_one_result(self, runner, tmp_path):
        for n in range(3):
            _write_dicom(str(tmp_path / f"IM{n}.dcm"), instance_number=n)
        job_id = runner.start_scan(str(tmp_path))
        messages = list(runner.messages(job_id, timeout=TIMEOUT))

        assert all(m.job_id == job_id for m in messages)
        assert isinstance(messages[-1], ResultMessage)
        assert all(isinstance(m, ProgressMessage) for m in messages[:-1])
        assert messages[-2].percent == 1.0
        assert messages[-1].index.stats.instances == 3

    def test_corrupt_file_does_not_fail_the_job(self, runner, tmp_path):
        _write_dicom(str(tmp_path / "a.dcm"))
        (tmp_path / "b.dcm").write_bytes(b"corrupt" * 100)
        _write_dicom(str(tmp_path / "c.dcm"), instance_number=2)
        job_id = runner.start_scan(str(tmp_path))
        messages = list(runner.messages(job_id, timeout=TIMEOUT))

        types = [m.type for m in messages]
        assert types.count("result") == 1
        assert "error" not in types
        stats = messages[-1].index.stats
        assert stats.files_parsed < stats.files_total

    def test_missing_root_is_an_empty_result(self, runner, tmp_path):
        msg = runner.wait(runner.start_scan(str(tmp_path / "nope")), timeout=TIMEOUT)
        assert isinstance(msg, ResultMessage)
        assert msg.index.stats.files_total == 0

    def test_walk_failure_is_one_error_message(self, runner, tmp_path, monkeypatch):
        def broken_scan(*args, **kwargs):
            raise RuntimeError("walk exploded")

        monkeypatch.setattr(jobs, "scan_directory", broken_scan)
        job_id = runner.start_scan(str(tmp_path))
        messages = list(runner.messages(job_id, timeout=TIMEOUT))
        assert len(messages) == 1
        assert isinstance(messages[0], ErrorMessage)
        assert messages[0].error == "walk exploded"
        assert messages[0].to_dict() == {"type": "error", "job_id": job_id, "error": "walk exploded"}

    def test_options_are_passed_through(self, runner, tmp_path):
        _write_dicom(str(tmp_path / "a.dcm"))
        job_id = runner.start_scan(str(tmp_path), ScanOptions(redact_phi=True))
        msg = runner.wait(job_id, timeout=TIMEOUT)
        assert msg.index.patients[0].name is None

    def test_concurrent_scans_are_independent(self, runner, tmp_path):
        (tmp_path / "one").mkdir()
        (tmp_path / "two").mkdir()
        _write_dicom(str(tmp_path / "one" / "a.dcm"))
        _write_dicom(str(tmp_path / "two" / "a.dcm"))
        _write_dicom(str(tmp_path / "two" / "b.dcm"), instance_number=2)
        first = runner.start_scan(str(tmp_path / "one"))
        second = runner.start_scan(str(tmp_path / "two"))
        assert first != second
        assert runner.wait(second, timeout=TIMEOUT).index.stats.instances == 2
        assert runner.wait(first, timeout=TIMEOUT).index.stats.instances == 1

    def test_messages_for_unknown_job(self, runner):
        with pytest.raises(KeyError):
            next(runner.messages("job_0_000000"))

    def test_on_message_callback(self, tmp_path):
        seen = []
        _write_dicom(str(tmp_path / "a.dcm"))
        with JobRunner(max_workers=1, on_message=seen.append) as runner:
            job_id = runner.start_scan(str(tmp_path))
        # Leaving the block waits for the job
        assert [m.job_id for m in seen] == [job_id] * len(seen)
        assert [m.type for m in seen].count("result") == 1
        assert seen[-1].type == "result"
        assert seen[-1].to_dict()["index"]["stats"]["instances"] == 1

    def test_callback_runner_keeps_no_queues(self, tmp_path):
        seen = []
        with JobRunner(max_workers=1, on_message=seen.append) as runner:
            job_ids = [runner.start_scan(str(tmp_path)) for _ in range(3)]
        assert len([m for m in seen if m.type == "result"]) == 3
        for job_id in job_ids:
            with pytest.raises(KeyError):
                next(runner.messages(job_id))

    def test_drained_queue_is_released(self, runner, tmp_path):
        job_id = runner.start_scan(str(tmp_path))
        runner.wait(job_id, timeout=TIMEOUT)
        with pytest.raises(KeyError):
            next(runner.messages(job_id))

    def test_failing_callback_does_not_break_the_job(self, tmp_path):
        seen = []

        def flaky_callback(msg):
            if msg.type == "progress":
                raise ValueError("ui gone")
            seen.append(msg)

        _write_dicom(str(tmp_path / "a.dcm"))
        with JobRunner(max_workers=1, on_message=flaky_callback) as runner:
            runner.start_scan(str(tmp_path))
        assert [m.type for m in seen] == ["result"]
        assert seen[0].index.stats.instances == 1


class TestHeaderJobs:
    def test_returns_tree(self, runner, tmp_path):
        path = str(tmp_path / "a.dcm")
        _write_dicom(path)
        headers = runner.get_headers(path, timeout=TIMEOUT)
        assert isinstance(headers, list)
        assert all(isinstance(n, HeaderNode) for n in headers)
        assert any(n.preview == "CT" for n in headers)

    def test_missing_file_is_error_payload(self, runner, tmp_path):
        result = runner.get_headers(str(tmp_path / "missing.dcm"), timeout=TIMEOUT)
        assert set(result) == {"error"}
        assert result["error"]

    def test_not_dicom_is_error_payload(self, runner, tmp_path):
        junk = tmp_path / "junk.dcm"
        junk.write_bytes(b"junk" * 100)
        result = runner.get_headers(str(junk), timeout=TIMEOUT)
        assert "error" in result

    def test_options_are_applied(self, runner, tmp_path):
        path = str(tmp_path / "a.dcm")
        _write_dicom(path)
        headers = runner.get_headers(path, ScanOptions(ignore_bulk=True), timeout=TIMEOUT)
        assert all(n.dtype != "Binary" for n in headers)

    def test_shared_dictionary_used_by_default(self, tmp_path, monkeypatch):
        shared = TagDictionary()
        monkeypatch.setattr(TagDictionary, "_shared", shared)
        path = str(tmp_path / "a.dcm")
        _write_dicom(path)
        with JobRunner(max_workers=1) as runner:
            headers = runner.get_headers(path, timeout=TIMEOUT)
        # An empty dictionary leaves every public tag unresolved
        assert any(n.keyword == "Unknown Tag" for n in headers)

    def test_truncated_file_is_error_payload(self, runner, tmp_path):
        path = tmp_path / "a.dcm"
        _write_dicom(str(path))
        data = path.read_bytes()
        path.write_bytes(data[: data.index(b"Doe^John") + 3])
        result = runner.get_headers(str(path), timeout=TIMEOUT)
        assert isinstance(result, dict)
        assert result["error"]

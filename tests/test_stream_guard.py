"""Tests for dicom_catalog/stream_guard.py."""

import io

import pydicom
import pytest
from pydicom.dataelem import RawDataElement
from pydicom.dataset import Dataset, FileDataset
from pydicom.errors import InvalidDicomError
from pydicom.sequence import Sequence
from pydicom.tag import Tag
from pydicom.uid import ExplicitVRLittleEndian

from dicom_catalog.stream_guard import (
    GuardedReader,
    TruncatedFileError,
    check_lengths,
    read_complete,
)

PATIENT_NAME = Tag(0x00100010)


def _dicom_bytes(tmp_path) -> bytes:
    file_meta = pydicom.Dataset()
    file_meta.MediaStorageSOPClassUID = pydicom.uid.UID("1.2.840.10008.5.1.4.1.1.2")
    file_meta.MediaStorageSOPInstanceUID = pydicom.uid.generate_uid()
    file_meta.TransferSyntaxUID = ExplicitVRLittleEndian

    path = str(tmp_path / "a.dcm")
    ds = FileDataset(path, {}, file_meta=file_meta, preamble=b"\0" * 128)
    ds.PatientName = "Doe^John"
    ds.Modality = "CT"
    ds.save_as(path)
    with open(path, "rb") as f:
        return f.read()


def _raw(value: bytes, length: int) -> RawDataElement:
    return RawDataElement(PATIENT_NAME, "PN", length, value, 0, False, True)


class TestGuardedReader:
    def test_full_reads_are_clean(self):
        guard = GuardedReader(io.BytesIO(b"0123456789"))
        assert guard.read(4) == b"0123"
        assert guard.read(6) == b"456789"
        assert guard.read(8) == b""
        assert guard.overrun_at is None

    def test_short_read_inside_stream_is_flagged(self):
        guard = GuardedReader(io.BytesIO(b"0123456789"))
        guard.read(4)
        assert guard.read(10) == b"456789"
        assert guard.overrun_at == 4

    def test_short_read_at_start_is_allowed(self):
        guard = GuardedReader(io.BytesIO(b"short"))
        assert guard.read(128) == b"short"
        assert guard.overrun_at is None

    def test_seek_past_end_is_flagged(self):
        guard = GuardedReader(io.BytesIO(b"0123456789"))
        guard.seek(4)
        guard.seek(20, io.SEEK_CUR)
        assert guard.overrun_at == 24

    def test_first_overrun_is_kept(self):
        guard = GuardedReader(io.BytesIO(b"0123456789"))
        guard.seek(12)
        guard.seek(30)
        assert guard.overrun_at == 12

    def test_size_keeps_position(self):
        fp = io.BytesIO(b"0123456789")
        fp.seek(3)
        guard = GuardedReader(fp)
        assert guard.size == 10
        assert guard.tell() == 3


class TestCheckLengths:
    def test_complete_raw_value_passes(self):
        check_lengths(Dataset({PATIENT_NAME: _raw(b"Doe^John", 8)}))

    def test_short_raw_value_raises(self):
        with pytest.raises(TruncatedFileError, match=r"\(0010,0010\) declares 8 bytes but only 3"):
            check_lengths(Dataset({PATIENT_NAME: _raw(b"Doe", 8)}))

    def test_short_value_inside_sequence_item(self):
        item = Dataset({PATIENT_NAME: _raw(b"Doe", 8)})
        outer = Dataset()
        outer.OtherPatientIDsSequence = Sequence([Dataset(), item])
        with pytest.raises(TruncatedFileError):
            check_lengths(outer)


class TestReadComplete:
    def test_complete_file(self, tmp_path):
        ds = read_complete(io.BytesIO(_dicom_bytes(tmp_path)))
        assert ds.PatientName == "Doe^John"
        assert ds.Modality == "CT"

    def test_truncated_file(self, tmp_path):
        data = _dicom_bytes(tmp_path)
        with pytest.raises(TruncatedFileError):
            read_complete(io.BytesIO(data[: data.index(b"Doe^John") + 3]))

    def test_is_an_invalid_dicom_error(self, tmp_path):
        data = _dicom_bytes(tmp_path)
        with pytest.raises(InvalidDicomError):
            read_complete(io.BytesIO(data[:-1]))

    def test_not_dicom_still_raises(self):
        with pytest.raises(InvalidDicomError):
            read_complete(io.BytesIO(b"not dicom" * 20))

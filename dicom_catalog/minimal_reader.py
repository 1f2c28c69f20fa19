"""
minimal_reader.py - Fast extraction of identifying tags from one file.

Reads just enough of a DICOM Part 10 stream to pull a fixed allow-list of
identifying and geometry tags, stopping before Pixel Data (7fe0,0010).
This is the per-file step of a directory scan, so it favours speed and
tolerance over completeness:

- A tag that is missing or fails to convert becomes ``None``; the other
  fields are still extracted.
- A file that cannot be parsed at all (not Part 10, truncated header)
  raises, and the caller decides to skip it.
"""

import io
import logging
import math
import os
from dataclasses import dataclass
from typing import Optional, Union

import pydicom
from pydicom.multival import MultiValue

from dicom_catalog.config import CONFIG
from dicom_catalog.stream_guard import read_complete

logger = logging.getLogger(__name__)

Number = Union[int, float]

# ---------------------------------------------------------------------------
# Allow-list: field name -> DICOM keyword
# ---------------------------------------------------------------------------

_STRING_FIELDS: dict[str, str] = {
    "patient_name": "PatientName",
    "patient_id": "PatientID",
    "study_instance_uid": "StudyInstanceUID",
    "series_instance_uid": "SeriesInstanceUID",
    "sop_instance_uid": "SOPInstanceUID",
    "study_description": "StudyDescription",
    "series_description": "SeriesDescription",
    "modality": "Modality",
    "acquisition_date": "AcquisitionDate",
    "acquisition_time": "AcquisitionTime",
    "instance_creation_date": "InstanceCreationDate",
    "instance_creation_time": "InstanceCreationTime",
    "content_date": "ContentDate",
    "content_time": "ContentTime",
    "series_date": "SeriesDate",
    "series_time": "SeriesTime",
    "manufacturer": "Manufacturer",
    "manufacturer_model_name": "ManufacturerModelName",
}

_NUMBER_FIELDS: dict[str, str] = {
    "instance_number": "InstanceNumber",
    "acquisition_number": "AcquisitionNumber",
    "number_of_frames": "NumberOfFrames",
    "rows": "Rows",
    "columns": "Columns",
    "slice_thickness": "SliceThickness",
}

# field name -> (keyword, required component count)
_VECTOR_FIELDS: dict[str, tuple[str, int]] = {
    "image_orientation_patient": ("ImageOrientationPatient", 6),
    "image_position_patient": ("ImagePositionPatient", 3),
    "pixel_spacing": ("PixelSpacing", 2),
}

_ALLOWED_KEYWORDS = (
    list(_STRING_FIELDS.values())
    + list(_NUMBER_FIELDS.values())
    + [kw for kw, _ in _VECTOR_FIELDS.values()]
)


@dataclass
class MinimalDataset:
    """The fixed per-file record used to build the catalog index."""
    patient_name: Optional[str] = None
    patient_id: Optional[str] = None
    study_instance_uid: Optional[str] = None
    series_instance_uid: Optional[str] = None
    sop_instance_uid: Optional[str] = None
    study_description: Optional[str] = None
    series_description: Optional[str] = None
    modality: Optional[str] = None
    instance_number: Optional[Number] = None
    acquisition_number: Optional[Number] = None
    image_orientation_patient: Optional[list[float]] = None
    image_position_patient: Optional[list[float]] = None
    number_of_frames: Optional[Number] = None
    rows: Optional[Number] = None
    columns: Optional[Number] = None
    pixel_spacing: Optional[list[float]] = None
    slice_thickness: Optional[Number] = None
    acquisition_date: Optional[str] = None
    acquisition_time: Optional[str] = None
    instance_creation_date: Optional[str] = None
    instance_creation_time: Optional[str] = None
    content_date: Optional[str] = None
    content_time: Optional[str] = None
    series_date: Optional[str] = None
    series_time: Optional[str] = None
    manufacturer: Optional[str] = None
    manufacturer_model_name: Optional[str] = None

    @property
    def date(self) -> Optional[str]:
        """Best-effort date: acquisition → instance creation → content → series."""
        return (
            self.acquisition_date
            or self.instance_creation_date
            or self.content_date
            or self.series_date
            or None
        )

    @property
    def time(self) -> Optional[str]:
        """Best-effort time, same fallback order as :attr:`date`."""
        return (
            self.acquisition_time
            or self.instance_creation_time
            or self.content_time
            or self.series_time
            or None
        )

    @property
    def has_geometry(self) -> bool:
        return bool(self.rows and self.columns)


# ---------------------------------------------------------------------------
# Value helpers
# ---------------------------------------------------------------------------

def _text(ds: pydicom.Dataset, keyword: str) -> Optional[str]:
    """String form of *keyword*, or None if absent, empty or unreadable."""
    try:
        value = ds.get(keyword)
    except Exception as exc:
        logger.debug("Could not read %s: %s", keyword, exc)
        return None
    if value is None:
        return None
    if isinstance(value, MultiValue):
        text = "\\".join(str(v) for v in value)
    elif isinstance(value, bytes):
        text = value.decode("latin-1")
    else:
        text = str(value)
    text = text.strip(" \x00")
    return text or None


def _to_number(token: str) -> Optional[Number]:
    try:
        n = float(token.strip())
    except ValueError:
        return None
    if not math.isfinite(n):
        return None
    return int(n) if n.is_integer() else n


def _number(ds: pydicom.Dataset, keyword: str) -> Optional[Number]:
    text = _text(ds, keyword)
    if text is None:
        return None
    return _to_number(text.split("\\")[0])


def _vector(ds: pydicom.Dataset, keyword: str, count: int) -> Optional[list[float]]:
    text = _text(ds, keyword)
    if text is None:
        return None
    parts = text.split("\\")
    if len(parts) < count:
        return None
    values = [_to_number(p) for p in parts[:count]]
    if any(v is None for v in values):
        return None
    return [float(v) for v in values]


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------

def read_minimal_dataset(data: bytes, force: Optional[bool] = None) -> MinimalDataset:
    """
    Parse the allow-listed tags out of raw DICOM bytes.

    Parameters
    ----------
    data : bytes
        Full file contents.
    force : bool, optional
        Passed to :func:`pydicom.dcmread`.  When False (the default from
        CONFIG) files without the Part 10 preamble are rejected.

    Returns
    -------
    MinimalDataset

    Raises
    ------
    pydicom.errors.InvalidDicomError
        If the bytes are not a readable DICOM stream, or end before the
        data they declare.
    """
    force = CONFIG["scan"]["force"] if force is None else force
    ds = read_complete(
        io.BytesIO(data),
        stop_before_pixels=True,
        force=force,
        specific_tags=_ALLOWED_KEYWORDS,
    )

    record = MinimalDataset()
    for name, keyword in _STRING_FIELDS.items():
        setattr(record, name, _text(ds, keyword))
    for name, keyword in _NUMBER_FIELDS.items():
        setattr(record, name, _number(ds, keyword))
    for name, (keyword, count) in _VECTOR_FIELDS.items():
        setattr(record, name, _vector(ds, keyword, count))
    return record


@dataclass
class QuickMeta:
    """Just enough metadata to title a single opened file."""
    modality: Optional[str] = None
    series_description: Optional[str] = None
    sop_instance_uid: Optional[str] = None
    instance_number: Optional[Number] = None
    date: Optional[str] = None
    time: Optional[str] = None


def quick_meta(path: str) -> Optional[QuickMeta]:
    """Read a file's quick metadata; returns None if it cannot be read."""
    try:
        with open(path, "rb") as f:
            record = read_minimal_dataset(f.read())
    except Exception as exc:
        logger.debug("No quick metadata for %s: %s", path, exc)
        return None
    return QuickMeta(
        modality=record.modality,
        series_description=record.series_description,
        sop_instance_uid=record.sop_instance_uid,
        instance_number=record.instance_number,
        date=record.date,
        time=record.time,
    )


def tab_title(path: str, meta: Optional[QuickMeta] = None) -> str:
    """``"<MODALITY> — <series description or file name>"``"""
    meta = meta or QuickMeta()
    return f"{meta.modality or 'UNK'} — {meta.series_description or os.path.basename(path)}"


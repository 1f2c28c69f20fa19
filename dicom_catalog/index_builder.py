"""
index_builder.py - Directory scan into a Patient/Study/Series/Instance tree.

Walks a folder, reads the minimal dataset of every file and folds the
records into a hierarchy keyed by patient ID, study UID and series UID.
Each series carries a summary (modality, description, geometry) taken
from one representative instance so the same values are not repeated on
every instance.

Files that cannot be read, are too small, or are not DICOM are skipped
without aborting the scan; they still count towards ``files_total``.
"""

import logging
from dataclasses import asdict, dataclass, field
from typing import Any, Callable, Optional

from dicom_catalog.config import CONFIG
from dicom_catalog.minimal_reader import MinimalDataset, Number, read_minimal_dataset
from dicom_catalog.options import ScanOptions
from dicom_catalog.walker import list_files

logger = logging.getLogger(__name__)

UNKNOWN_PATIENT = "UNKNOWN"
UNKNOWN_MODALITY = "UNK"

ProgressCallback = Callable[[float, Optional[str]], None]


# ---------------------------------------------------------------------------
# Data classes
# ---------------------------------------------------------------------------

@dataclass
class InstanceRef:
    """Where one instance lives and how it sorts within its series."""
    path: str
    sop_uid: Optional[str] = None
    instance_number: Optional[Number] = None
    date: Optional[str] = None
    time: Optional[str] = None
    acquisition_number: Optional[Number] = None
    acquisition_time: Optional[str] = None
    frame_count: Optional[Number] = None


@dataclass
class SeriesGeometry:
    """Image geometry of the series' representative instance."""
    rows: Optional[Number] = None
    columns: Optional[Number] = None
    pixel_spacing: Optional[list[float]] = None
    slice_thickness: Optional[Number] = None
    image_orientation: Optional[list[float]] = None
    image_position: Optional[list[float]] = None


@dataclass
class Series:
    uid: str
    modality: str = UNKNOWN_MODALITY
    description: Optional[str] = None
    study_description: Optional[str] = None
    instance_count: int = 0
    geometry: SeriesGeometry = field(default_factory=SeriesGeometry)
    manufacturer: Optional[str] = None
    model: Optional[str] = None
    instances: list[InstanceRef] = field(default_factory=list)


@dataclass
class Study:
    uid: str
    description: Optional[str] = None
    series: list[Series] = field(default_factory=list)


@dataclass
class Patient:
    id: str
    name: Optional[str] = None
    studies: list[Study] = field(default_factory=list)


@dataclass
class ScanStats:
    """Running counters reported with the finished index."""
    files_total: int = 0
    files_parsed: int = 0
    patients: int = 0
    studies: int = 0
    series: int = 0
    instances: int = 0
    modality_by_series: dict[str, int] = field(default_factory=dict)


@dataclass
class CatalogIndex:
    """Aggregated result of one directory scan."""
    patients: list[Patient] = field(default_factory=list)
    stats: ScanStats = field(default_factory=ScanStats)

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


# ---------------------------------------------------------------------------
# Folding
# ---------------------------------------------------------------------------

@dataclass
class _StudyAcc:
    description: Optional[str]
    series: dict[str, list[tuple[str, MinimalDataset]]] = field(default_factory=dict)


@dataclass
class _PatientAcc:
    name: Optional[str]
    studies: dict[str, _StudyAcc] = field(default_factory=dict)


def _sort_key(item: tuple[str, MinimalDataset]) -> tuple[Number, Number]:
    record = item[1]
    return (record.acquisition_number or 0, record.instance_number or 0)


def _summarize_series(
    uid: str,
    study_description: Optional[str],
    members: list[tuple[str, MinimalDataset]],
) -> Series:
    ordered = sorted(members, key=_sort_key)
    sample = next((r for _, r in ordered if r.has_geometry), ordered[0][1])

    return Series(
        uid=uid,
        modality=sample.modality or UNKNOWN_MODALITY,
        description=sample.series_description,
        study_description=study_description,
        instance_count=len(ordered),
        geometry=SeriesGeometry(
            rows=sample.rows,
            columns=sample.columns,
            pixel_spacing=sample.pixel_spacing,
            slice_thickness=sample.slice_thickness,
            image_orientation=sample.image_orientation_patient,
            image_position=sample.image_position_patient,
        ),
        manufacturer=sample.manufacturer,
        model=sample.manufacturer_model_name,
        instances=[
            InstanceRef(
                path=path,
                sop_uid=r.sop_instance_uid,
                instance_number=r.instance_number,
                date=r.date,
                time=r.time,
                acquisition_number=r.acquisition_number,
                acquisition_time=r.acquisition_time,
                frame_count=r.number_of_frames,
            )
            for path, r in ordered
        ],
    )


def _read_record(path: str, min_bytes: int) -> Optional[MinimalDataset]:
    """Read and parse one file; None means skip it."""
    try:
        with open(path, "rb") as f:
            data = f.read()
    except OSError as exc:
        logger.debug("Unreadable file %s: %s", path, exc)
        return None

    if len(data) < min_bytes:
        logger.debug("Skipping %s: only %d bytes", path, len(data))
        return None

    try:
        return read_minimal_dataset(data)
    except Exception as exc:
        logger.debug("Not a parsable DICOM file %s: %s", path, exc)
        return None


def scan_directory(
    root: str,
    on_progress: Optional[ProgressCallback] = None,
    options: Optional[ScanOptions] = None,
    progress_every: Optional[int] = None,
    min_file_bytes: Optional[int] = None,
) -> CatalogIndex:
    """
    Index every DICOM file beneath *root*.

    Parameters
    ----------
    root : str
        Directory to scan.
    on_progress : callable, optional
        Called as ``on_progress(fraction, current_path)`` every
        *progress_every* files, on the last file, and once more with
        ``(1.0, None)`` when the walk is finished.
    options : ScanOptions, optional
        ``redact_phi`` leaves patient names out of the index.
    progress_every : int, optional
        Progress cadence.  Defaults to config value.
    min_file_bytes : int, optional
        Files smaller than this are skipped.  Defaults to config value.

    Returns
    -------
    CatalogIndex
        The patient tree plus scan counters.
    """
    options = options or ScanOptions()
    progress_every = progress_every or CONFIG["scan"]["progress_every"]
    min_file_bytes = CONFIG["scan"]["min_file_bytes"] if min_file_bytes is None else min_file_bytes

    files = list_files(root)
    total = len(files) or 1
    stats = ScanStats(files_total=len(files))
    patients: dict[str, _PatientAcc] = {}

    logger.info("Scanning %s: %d files found.", root, len(files))

    for processed, path in enumerate(files, start=1):
        if on_progress and (processed % progress_every == 0 or processed == total):
            on_progress(processed / total, path)

        record = _read_record(path, min_file_bytes)
        if record is None:
            continue
        stats.files_parsed += 1

        study_uid = record.study_instance_uid
        series_uid = record.series_instance_uid
        if not study_uid or not series_uid:
            continue

        patient_id = record.patient_id or UNKNOWN_PATIENT
        patient_name = None if options.redact_phi else record.patient_name

        patient = patients.setdefault(patient_id, _PatientAcc(name=patient_name))
        if patient.name is None:
            patient.name = patient_name

        study = patient.studies.setdefault(study_uid, _StudyAcc(description=record.study_description))
        study.series.setdefault(series_uid, []).append((path, record))
        stats.instances += 1

    if on_progress:
        on_progress(1.0, None)

    index = CatalogIndex(stats=stats)
    for patient_id, patient in patients.items():
        out_patient = Patient(id=patient_id, name=patient.name)
        for study_uid, study in patient.studies.items():
            stats.studies += 1
            out_study = Study(uid=study_uid, description=study.description)
            for series_uid, members in study.series.items():
                stats.series += 1
                series = _summarize_series(series_uid, study.description, members)
                stats.modality_by_series[series.modality] = (
                    stats.modality_by_series.get(series.modality, 0) + 1
                )
                out_study.series.append(series)
            out_patient.studies.append(out_study)
        index.patients.append(out_patient)
    stats.patients = len(index.patients)

    logger.info(
        "Scan of %s complete: %d/%d files parsed, %d patients, %d studies, %d series, %d instances.",
        root, stats.files_parsed, stats.files_total,
        stats.patients, stats.studies, stats.series, stats.instances,
    )
    return index

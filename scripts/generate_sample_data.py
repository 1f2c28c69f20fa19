"""
generate_sample_data.py - Create a synthetic DICOM folder tree for demos.

Writes a small Patient/Study/Series tree to data/sample/ so the scanner and
header viewer can be tried without real patient data.  The tree also
contains the awkward cases a real archive has:

- slices written out of instance order,
- a nested sequence and a private (odd-group) tag,
- a file too small to be DICOM, and a non-DICOM file with a .dcm name.

Usage
-----
    python scripts/generate_sample_data.py [output_folder]

Then try:
    python scripts/scan_directory.py data/sample
    python scripts/dump_headers.py data/sample/P001/ST1/SE1/IM0001.dcm
"""

import os
import sys

import numpy as np
import pydicom
from pydicom.dataset import Dataset, FileDataset
from pydicom.sequence import Sequence
from pydicom.uid import ExplicitVRLittleEndian, generate_uid

# Make sure repo root is on the path when run as a script
_REPO_ROOT = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
sys.path.insert(0, _REPO_ROOT)

OUTPUT_FOLDER = os.path.join(_REPO_ROOT, "data", "sample")

CT_IMAGE_STORAGE = "1.2.840.10008.5.1.4.1.1.2"
MR_IMAGE_STORAGE = "1.2.840.10008.5.1.4.1.1.4"

# ---------------------------------------------------------------------------
# Synthetic archive layout
# ---------------------------------------------------------------------------
# (patient_id, patient_name, [(study_desc, [(modality, series_desc, n_slices)])])
_ARCHIVE = [
    ("P001", "Synthetic^Alice", [
        ("Head CT", [("CT", "Axial 5mm", 4), ("CT", "Scout", 1)]),
    ]),
    ("P002", "Synthetic^Bob", [
        ("Brain MR", [("MR", "T1 SAG", 3), ("MR", "T2 AX", 3)]),
        ("Follow-up CT", [("CT", "Axial 2.5mm", 2)]),
    ]),
]


def _make_dicom(
    path: str,
    patient_id: str,
    patient_name: str,
    study_uid: str,
    study_desc: str,
    series_uid: str,
    series_desc: str,
    modality: str,
    instance_number: int,
    size: int = 16,
) -> None:
    """Write one slice with identifying tags, geometry and a nested sequence."""
    sop_class = CT_IMAGE_STORAGE if modality == "CT" else MR_IMAGE_STORAGE

    file_meta = pydicom.Dataset()
    file_meta.MediaStorageSOPClassUID = pydicom.uid.UID(sop_class)
    file_meta.MediaStorageSOPInstanceUID = generate_uid()
    file_meta.TransferSyntaxUID = ExplicitVRLittleEndian

    ds = FileDataset(path, {}, file_meta=file_meta, preamble=b"\0" * 128)

    ds.PatientName = patient_name
    ds.PatientID = patient_id
    ds.StudyInstanceUID = study_uid
    ds.SeriesInstanceUID = series_uid
    ds.SOPClassUID = sop_class
    ds.SOPInstanceUID = file_meta.MediaStorageSOPInstanceUID
    ds.StudyDescription = study_desc
    ds.SeriesDescription = series_desc
    ds.Modality = modality
    ds.Manufacturer = "Synthetic Imaging"
    ds.ManufacturerModelName = "Phantom 1"
    ds.InstanceNumber = instance_number
    ds.AcquisitionNumber = 1
    ds.SeriesDate = "20230601"
    ds.SeriesTime = "120000"
    ds.AcquisitionDate = "20230601"
    ds.AcquisitionTime = f"1200{instance_number:02d}"

    ds.ImageOrientationPatient = [1, 0, 0, 0, 1, 0]
    ds.ImagePositionPatient = [0, 0, float(instance_number) * 5.0]
    ds.PixelSpacing = [0.5, 0.5]
    ds.SliceThickness = 5.0

    # Nested sequence: referenced image -> purpose of reference code
    code = Dataset()
    code.CodeValue = "121311"
    code.CodingSchemeDesignator = "DCM"
    code.CodeMeaning = "Localizer"
    ref = Dataset()
    ref.ReferencedSOPClassUID = sop_class
    ref.ReferencedSOPInstanceUID = generate_uid()
    ref.PurposeOfReferenceCodeSequence = Sequence([code])
    ds.ReferencedImageSequence = Sequence([ref])

    # Vendor block in an odd group
    ds.add_new(0x00090010, "LO", "SYNTHETIC_VENDOR")
    ds.add_new(0x00091001, "LO", f"slice-{instance_number}")

    ds.Rows = size
    ds.Columns = size
    ds.SamplesPerPixel = 1
    ds.PhotometricInterpretation = "MONOCHROME2"
    ds.PixelRepresentation = 0
    ds.BitsAllocated = 16
    ds.BitsStored = 16
    ds.HighBit = 15
    ds.PixelData = np.full((size, size), instance_number * 100, dtype=np.uint16).tobytes()

    ds.save_as(path)


def generate(output_folder: str = OUTPUT_FOLDER) -> int:
    """Generate the synthetic archive into *output_folder*; returns files written."""
    written = 0
    print(f"Writing synthetic DICOM tree to: {output_folder}")
    print("-" * 60)

    for patient_id, patient_name, studies in _ARCHIVE:
        for s_idx, (study_desc, series_list) in enumerate(studies, start=1):
            study_uid = generate_uid()
            for se_idx, (modality, series_desc, n_slices) in enumerate(series_list, start=1):
                series_uid = generate_uid()
                folder = os.path.join(output_folder, patient_id, f"ST{s_idx}", f"SE{se_idx}")
                os.makedirs(folder, exist_ok=True)
                # Reverse order on disk so the index has to sort the slices
                for n in reversed(range(1, n_slices + 1)):
                    path = os.path.join(folder, f"IM{n:04d}.dcm")
                    _make_dicom(
                        path, patient_id, patient_name, study_uid, study_desc,
                        series_uid, series_desc, modality, n,
                    )
                    written += 1
                print(f"  {patient_id}/ST{s_idx}/SE{se_idx}: {modality} '{series_desc}' x{n_slices}")

    junk = os.path.join(output_folder, "junk")
    os.makedirs(junk, exist_ok=True)
    with open(os.path.join(junk, "tiny.dcm"), "wb") as f:
        f.write(b"DICM")
    with open(os.path.join(junk, "notes.dcm"), "wb") as f:
        f.write(b"not a dicom file\n" * 20)
    written += 2

    print("-" * 60)
    print(f"Done: {written} files.")
    return written


if __name__ == "__main__":
    generate(sys.argv[1] if len(sys.argv) > 1 else OUTPUT_FOLDER)

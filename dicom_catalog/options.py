"""
options.py - Per-job switches shared by directory scans and header decodes.
"""

from dataclasses import dataclass

# Keywords whose values identify the patient, after the de-identification
# subset of DICOM PS3.15 Annex E.
PHI_KEYWORDS: frozenset[str] = frozenset({
    "PatientName",
    "PatientID",
    "PatientBirthDate",
    "PatientSex",
    "PatientAge",
    "PatientAddress",
    "PatientTelephoneNumbers",
    "OtherPatientIDs",
    "OtherPatientNames",
    "OtherPatientIDsSequence",
    "ReferringPhysicianName",
    "ReferringPhysicianAddress",
    "ReferringPhysicianTelephoneNumbers",
    "InstitutionName",
    "InstitutionAddress",
    "InstitutionalDepartmentName",
    "PerformingPhysicianName",
    "OperatorsName",
    "NameOfPhysiciansReadingStudy",
    "RequestingPhysician",
    "ScheduledPerformingPhysicianName",
    "AccessionNumber",
    "StudyID",
    "DeviceSerialNumber",
    "RequestedProcedureID",
})


@dataclass(frozen=True)
class ScanOptions:
    """
    Switches accepted by both entry points.

    ignore_private : drop odd-group elements from header trees.
    ignore_bulk    : drop binary-class elements (OB, OW, UN ...) from header trees.
    redact_phi     : hide patient-identifying values (header previews and
                     patient names in the index).
    """
    ignore_private: bool = False
    ignore_bulk: bool = False
    redact_phi: bool = False

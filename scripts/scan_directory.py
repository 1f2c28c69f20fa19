"""
scan_directory.py - Index a folder of DICOM files from the command line.

Runs a scan job, logs its progress, and prints the resulting
Patient/Study/Series tree as JSON (or a short summary with --summary).

Usage
-----
    python scripts/scan_directory.py path/to/folder
    python scripts/scan_directory.py path/to/folder --summary
    python scripts/scan_directory.py path/to/folder --redact-phi -o index.json
"""

import argparse
import json
import logging
import os
import sys

# Ensure repo root is on sys.path regardless of launch directory
_REPO_ROOT = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
sys.path.insert(0, _REPO_ROOT)

from dicom_catalog.config import CONFIG  # noqa: E402
from dicom_catalog.jobs import JobRunner  # noqa: E402
from dicom_catalog.options import ScanOptions  # noqa: E402

logging.basicConfig(
    level=CONFIG["logging"]["level"],
    format=CONFIG["logging"]["format"],
)
logger = logging.getLogger(__name__)


def _print_summary(index: dict) -> None:
    stats = index["stats"]
    print("=" * 50)
    print("SCAN SUMMARY")
    print("=" * 50)
    print(f"Files found   : {stats['files_total']}")
    print(f"Files parsed  : {stats['files_parsed']}")
    print(f"Patients      : {stats['patients']}")
    print(f"Studies       : {stats['studies']}")
    print(f"Series        : {stats['series']}")
    print(f"Instances     : {stats['instances']}")
    for modality, count in sorted(stats["modality_by_series"].items()):
        print(f"  {modality:<6}: {count} series")
    for patient in index["patients"]:
        print(f"\n{patient['id']}  {patient['name'] or ''}")
        for study in patient["studies"]:
            print(f"  {study['description'] or study['uid']}")
            for series in study["series"]:
                print(f"    [{series['modality']}] {series['description'] or series['uid']}"
                      f"  ({series['instance_count']} instances)")


def main(argv=None) -> int:
    parser = argparse.ArgumentParser(description="Index a folder of DICOM files.")
    parser.add_argument("root", help="Folder to scan")
    parser.add_argument("--summary", action="store_true", help="Print a readable summary instead of JSON")
    parser.add_argument("--redact-phi", action="store_true", help="Leave patient names out of the index")
    parser.add_argument("-o", "--output", help="Write JSON to this file instead of stdout")
    args = parser.parse_args(argv)

    with JobRunner() as runner:
        job_id = runner.start_scan(args.root, ScanOptions(redact_phi=args.redact_phi))
        terminal = None
        for msg in runner.messages(job_id):
            if msg.type == "progress":
                logger.info("%3.0f%%  %s", msg.percent * 100, msg.current_path or "done")
            terminal = msg

    if terminal is None or terminal.type == "error":
        logger.error("Scan failed: %s", getattr(terminal, "error", "no result"))
        return 1

    index = terminal.index.to_dict()
    if args.summary:
        _print_summary(index)
    elif args.output:
        with open(args.output, "w") as f:
            json.dump(index, f, indent=2)
        logger.info("Index written to %s", args.output)
    else:
        print(json.dumps(index, indent=2))
    return 0


if __name__ == "__main__":
    sys.exit(main())

"""
dump_headers.py - Print the full header tree of one DICOM file.

Usage
-----
    python scripts/dump_headers.py path/to/file.dcm
    python scripts/dump_headers.py path/to/file.dcm --json
    python scripts/dump_headers.py path/to/file.dcm --ignore-private --ignore-bulk
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
from dicom_catalog.minimal_reader import quick_meta, tab_title  # noqa: E402
from dicom_catalog.options import ScanOptions  # noqa: E402

logging.basicConfig(
    level=CONFIG["logging"]["level"],
    format=CONFIG["logging"]["format"],
)
logger = logging.getLogger(__name__)


def _print_nodes(nodes, indent: int = 0) -> None:
    pad = "  " * indent
    for node in nodes:
        if node.dtype == "Binary":
            value = "[binary]"
        else:
            value = node.preview
        vr = node.vr or ""
        print(f"{pad}{node.tag_hex:<14} {node.keyword:<36} {vr:<3} "
              f"len={node.length if node.length is not None else '-'} "
              f"vm={node.vm if node.vm is not None else '-'}  {value}")
        if node.children is not None:
            _print_nodes(node.children, indent + 1)


def main(argv=None) -> int:
    parser = argparse.ArgumentParser(description="Dump the header tree of a DICOM file.")
    parser.add_argument("path", help="DICOM file")
    parser.add_argument("--json", action="store_true", help="Print JSON instead of a listing")
    parser.add_argument("--ignore-private", action="store_true", help="Hide odd-group tags")
    parser.add_argument("--ignore-bulk", action="store_true", help="Hide binary elements")
    parser.add_argument("--redact-phi", action="store_true", help="Hide patient-identifying values")
    args = parser.parse_args(argv)

    options = ScanOptions(
        ignore_private=args.ignore_private,
        ignore_bulk=args.ignore_bulk,
        redact_phi=args.redact_phi,
    )
    with JobRunner(max_workers=1) as runner:
        headers = runner.get_headers(args.path, options)

    if isinstance(headers, dict):
        logger.error("Could not decode %s: %s", args.path, headers["error"])
        return 1

    if args.json:
        print(json.dumps([n.to_dict() for n in headers], indent=2))
    else:
        print(tab_title(args.path, quick_meta(args.path)))
        print("-" * 80)
        _print_nodes(headers)
    return 0


if __name__ == "__main__":
    sys.exit(main())

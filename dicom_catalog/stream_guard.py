"""
stream_guard.py - Reject DICOM streams that end before their declared data.

pydicom reads a truncated file without complaint: the last value comes
back short, and an element whose header was cut off is silently dropped.
Both entry points need all-or-nothing reads, so every parse goes through
:func:`read_complete`, which raises :class:`TruncatedFileError` when

- a read inside the stream returned fewer bytes than requested, or
- a skip (``specific_tags``) landed past the end of the stream, or
- a defined-length element holds fewer bytes than its header declares,
  at any sequence depth.
"""

import os
from typing import Any, BinaryIO, Optional

import pydicom
from pydicom.dataelem import RawDataElement
from pydicom.dataset import Dataset
from pydicom.errors import InvalidDicomError
from pydicom.sequence import Sequence

from dicom_catalog.tag_dictionary import tag_hex

_UNDEFINED_LENGTH = 0xFFFFFFFF


class TruncatedFileError(InvalidDicomError):
    """The stream ended before an element it declared."""


class GuardedReader:
    """
    File-like proxy that records reads and seeks running past the end.

    A short read at offset 0 is allowed: with ``force=True`` pydicom probes
    for a 128-byte preamble that headerless streams do not have.
    """

    def __init__(self, fp: BinaryIO):
        self._fp = fp
        here = fp.tell()
        self.size = fp.seek(0, os.SEEK_END)
        fp.seek(here)
        self.overrun_at: Optional[int] = None

    def read(self, size: int = -1) -> bytes:
        start = self._fp.tell()
        data = self._fp.read(size)
        if size is not None and size > 0 and 0 < len(data) < size and start > 0:
            self._flag(start)
        return data

    def seek(self, offset: int, whence: int = os.SEEK_SET) -> int:
        pos = self._fp.seek(offset, whence)
        if pos > self.size:
            self._flag(pos)
        return pos

    def tell(self) -> int:
        return self._fp.tell()

    def _flag(self, offset: int) -> None:
        if self.overrun_at is None:
            self.overrun_at = offset

    def __getattr__(self, name: str) -> Any:
        return getattr(self._fp, name)


def check_lengths(ds: Dataset) -> None:
    """
    Raise :class:`TruncatedFileError` if any defined-length element in *ds*
    (or in the items of its already-parsed sequences) is short.

    Raw elements are inspected without converting them.
    """
    stack = [ds]
    while stack:
        current = stack.pop()
        for tag in current.keys():
            elem = current.get_item(tag)
            if isinstance(elem, RawDataElement):
                if (
                    elem.length != _UNDEFINED_LENGTH
                    and elem.value is not None
                    and len(elem.value) < elem.length
                ):
                    raise TruncatedFileError(
                        f"Element {tag_hex(tag)} declares {elem.length} bytes "
                        f"but only {len(elem.value)} are present"
                    )
            elif elem is not None and isinstance(elem.value, Sequence):
                stack.extend(item for item in elem.value if item is not None)


def _overrun_error(guard: GuardedReader) -> TruncatedFileError:
    return TruncatedFileError(
        f"Stream of {guard.size} bytes ends inside the element at offset {guard.overrun_at}"
    )


def read_complete(
    fp: BinaryIO,
    stop_before_pixels: bool = True,
    force: bool = False,
    specific_tags: Optional[list] = None,
) -> Dataset:
    """
    :func:`pydicom.dcmread` that fails instead of returning a partial dataset.

    Raises
    ------
    pydicom.errors.InvalidDicomError
        If the stream is not DICOM, or (as :class:`TruncatedFileError`) if
        it ends before the data it declares.
    """
    guard = GuardedReader(fp)
    try:
        ds = pydicom.dcmread(
            guard,
            stop_before_pixels=stop_before_pixels,
            force=force,
            specific_tags=specific_tags,
        )
    except Exception as exc:
        # Parsing past a short read fails in many ways; report the cause.
        if guard.overrun_at is None:
            raise
        raise _overrun_error(guard) from exc
    if guard.overrun_at is not None:
        raise _overrun_error(guard)
    file_meta = getattr(ds, "file_meta", None)
    if file_meta is not None:
        check_lengths(file_meta)
    check_lengths(ds)
    return ds

"""
header_tree.py - Full header decode of one DICOM file.

Turns every element of a file (file-meta group first, then the dataset,
stopping before Pixel Data) into a :class:`HeaderNode` ready for display:

- ``keyword`` and ``vr`` are resolved through :class:`TagDictionary`;
  unresolved tags become "Private Tag" (odd group) or "Unknown Tag".
- ``dtype`` is a coarse type label derived from the VR.
- ``vm`` (value multiplicity) comes from the byte length for fixed-width
  numeric VRs and from the backslash-separated text for everything else.
- ``preview`` is a short, type-aware rendering of the value.

Sequences become nodes whose children are "Item N" nodes, each holding
the recursive decode of that item.  Nesting has no fixed limit, but a
configurable maximum depth fails closed with :class:`HeaderDepthError`
rather than exhausting the call stack.

All VR-specific behaviour is dispatched through :class:`VRGroup`.
"""

import logging
from dataclasses import dataclass
from enum import Enum
from functools import cached_property
from typing import Any, Callable, Optional, Union

import numpy as np
from pydicom.dataelem import DataElement, RawDataElement
from pydicom.dataset import Dataset
from pydicom.multival import MultiValue
from pydicom.sequence import Sequence

from dicom_catalog.config import CONFIG
from dicom_catalog.options import PHI_KEYWORDS, ScanOptions
from dicom_catalog.stream_guard import read_complete
from dicom_catalog.tag_dictionary import TagDictionary, is_private, tag_hex

logger = logging.getLogger(__name__)

PRIVATE_TAG = "Private Tag"
UNKNOWN_TAG = "Unknown Tag"
REDACTED = "[redacted]"
ELLIPSIS = "…"

_UNDEFINED_LENGTH = 0xFFFFFFFF


class HeaderDepthError(ValueError):
    """Sequence nesting exceeded the configured maximum depth."""


# ---------------------------------------------------------------------------
# VR classification
# ---------------------------------------------------------------------------

# VR -> (numpy type code, element width in bytes)
_FIXED_WIDTH: dict[str, tuple[str, int]] = {
    "US": ("u2", 2),
    "SS": ("i2", 2),
    "UL": ("u4", 4),
    "SL": ("i4", 4),
    "FL": ("f4", 4),
    "FD": ("f8", 8),
    "SV": ("i8", 8),
    "UV": ("u8", 8),
}
_AT_WIDTH = 4

_BINARY_VRS = frozenset({"OB", "OW", "OF", "OD", "OL", "OV", "UN"})
_TEXT_NUMERIC_VRS = frozenset({"IS", "DS"})
_TEXT_VRS = frozenset({
    "AE", "AS", "CS", "DA", "DT", "LO", "LT", "PN",
    "SH", "ST", "TM", "UI", "UC", "UR", "UT",
})

_DTYPES: dict[str, str] = {
    "UI": "UID",
    "DA": "Date",
    "TM": "Time",
    "DT": "DateTime",
    "AT": "Tag",
    "SQ": "Sequence",
    **{vr: "String" for vr in ("PN", "LO", "LT", "SH", "ST", "UT", "CS")},
    **{vr: "Number" for vr in ("IS", "DS", *_FIXED_WIDTH)},
    **{vr: "Binary" for vr in _BINARY_VRS},
}


class VRGroup(Enum):
    SEQUENCE = "sequence"
    BINARY = "binary"
    FIXED_NUMERIC = "fixed-numeric"
    TAG = "tag"
    TEXT_NUMERIC = "text-numeric"
    TEXT = "text"
    UNKNOWN = "unknown"

    @classmethod
    def of(cls, vr: Optional[str]) -> "VRGroup":
        code = (vr or "").upper()
        if code == "SQ":
            return cls.SEQUENCE
        if code in _BINARY_VRS:
            return cls.BINARY
        if code in _FIXED_WIDTH:
            return cls.FIXED_NUMERIC
        if code == "AT":
            return cls.TAG
        if code in _TEXT_NUMERIC_VRS:
            return cls.TEXT_NUMERIC
        if code in _TEXT_VRS:
            return cls.TEXT
        return cls.UNKNOWN


def classify_dtype(vr: Optional[str]) -> Optional[str]:
    """Coarse type label for *vr*; ``None`` when the VR itself is unknown."""
    if not vr:
        return None
    return _DTYPES.get(vr.upper(), "Other")


def element_width(vr: Optional[str]) -> Optional[int]:
    """Byte width of one value for fixed-width VRs (including AT)."""
    code = (vr or "").upper()
    if code in _FIXED_WIDTH:
        return _FIXED_WIDTH[code][1]
    if code == "AT":
        return _AT_WIDTH
    return None


def text_multiplicity(text: Optional[str]) -> int:
    if not text:
        return 0
    return len(text.split("\\"))


def value_multiplicity(
    vr: Optional[str],
    length: Optional[int],
    text: Optional[str],
    item_count: int = 0,
) -> int:
    """
    Number of values in an element.

    Sequences count their items and binary VRs count one value when
    non-empty.  Fixed-width VRs divide the byte length
    by the element width when it divides evenly; otherwise, and for every
    other VR, the backslash-separated text is counted.
    """
    group = VRGroup.of(vr)
    if group is VRGroup.SEQUENCE:
        return item_count
    if group is VRGroup.BINARY:
        # Binary payloads have no text form; a 0x5C byte inside one is data,
        # not a value separator. Non-empty counts as a single value.
        return 1 if length else 0
    width = element_width(vr)
    if width and length is not None and length % width == 0:
        return max(1, length // width)
    return text_multiplicity(text)


def truncate(text: str, limit: Optional[int] = None) -> str:
    limit = limit or CONFIG["headers"]["preview_max_chars"]
    if len(text) > limit:
        return text[: limit - 3] + ELLIPSIS
    return text


# ---------------------------------------------------------------------------
# Value rendering
# ---------------------------------------------------------------------------

def _format_number(value: Union[int, float]) -> str:
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value)


def _printable(raw: bytes) -> Optional[str]:
    """Decode *raw* as text if everything before the first NUL is printable."""
    head = raw.split(b"\x00", 1)[0]
    if not head:
        return None
    if all(b in (9, 10, 13) or 32 <= b <= 126 for b in head):
        return head.decode("ascii").rstrip()
    return None


def _text_of(value: Any) -> Optional[str]:
    """Generic string form of a converted pydicom value."""
    if value is None:
        return ""
    if isinstance(value, Sequence):
        return None
    if isinstance(value, (bytes, bytearray)):
        return _printable(bytes(value))
    if isinstance(value, (MultiValue, list, tuple)):
        parts = [_text_of(v) for v in value]
        return "\\".join(p or "" for p in parts)
    if isinstance(value, float):
        return _format_number(value)
    return str(value).rstrip(" \x00")


class _ElementView:
    """One element as read from the stream, with lazily converted value."""

    def __init__(self, ds: Dataset, tag: int, dictionary: TagDictionary):
        self.ds = ds
        self.tag = tag
        self.tag_hex = tag_hex(tag)
        self.stored = ds.get_item(tag)

        if isinstance(self.stored, RawDataElement):
            self.raw: Optional[bytes] = self.stored.value
            self.little_endian = self.stored.is_little_endian
            encoded_vr = self.stored.VR
            length = self.stored.length
            if length == _UNDEFINED_LENGTH:
                length = len(self.raw) if self.raw is not None else None
            self.length: Optional[int] = length
        else:
            self.raw = None
            self.little_endian = True
            encoded_vr = getattr(self.stored, "VR", None)
            value = getattr(self.stored, "value", None)
            self.length = len(value) if isinstance(value, (bytes, bytearray)) else None

        entry = dictionary.lookup(self.tag_hex)
        self.vr: Optional[str] = encoded_vr or entry.vr or None
        if entry.keyword:
            self.keyword = entry.keyword
        else:
            self.keyword = PRIVATE_TAG if is_private(self.tag_hex) else UNKNOWN_TAG
        self.group = VRGroup.of(self.vr)

    @cached_property
    def value(self) -> Any:
        """pydicom's converted value; None when conversion fails."""
        try:
            elem: DataElement = self.ds[self.tag]
            return elem.value
        except Exception as exc:
            logger.debug("Could not convert %s: %s", self.tag_hex, exc)
            return None

    @cached_property
    def text(self) -> Optional[str]:
        text = _text_of(self.value)
        if text is None and self.raw is not None:
            text = _printable(self.raw)
        return text

    @cached_property
    def items(self) -> list[Dataset]:
        value = self.value
        if isinstance(value, Sequence):
            return list(value)
        return []

    @property
    def is_sequence(self) -> bool:
        if self.group is VRGroup.SEQUENCE:
            return True
        # Undefined-length UN and unlisted private elements may still carry items.
        if self.group in (VRGroup.BINARY, VRGroup.UNKNOWN):
            return isinstance(self.value, Sequence)
        return False

    def numbers(self) -> list[str]:
        code, width = _FIXED_WIDTH[self.vr.upper()]
        if self.raw is not None:
            count = len(self.raw) // width
            if count == 0:
                return []
            order = "<" if self.little_endian else ">"
            arr = np.frombuffer(self.raw[: count * width], dtype=order + code)
            return [_format_number(v) for v in arr.tolist()]
        value = self.value
        if value is None or value == "":
            return []
        if not isinstance(value, (MultiValue, list, tuple)):
            value = [value]
        return [_format_number(v) for v in value]

    def tags(self) -> list[str]:
        if self.raw is not None:
            count = len(self.raw) // _AT_WIDTH
            if count == 0:
                return []
            order = "<" if self.little_endian else ">"
            pairs = np.frombuffer(self.raw[: count * _AT_WIDTH], dtype=order + "u2").reshape(-1, 2)
            return [f"({g:04x},{e:04x})" for g, e in pairs.tolist()]
        value = self.value
        if value is None or value == "":
            return []
        if not isinstance(value, (MultiValue, list, tuple)):
            value = [value]
        return [tag_hex(int(v)) for v in value]


def _preview_sequence(view: _ElementView) -> str:
    return f"Items: {len(view.items)}"


def _preview_binary(view: _ElementView) -> str:
    # Rendered as a fixed "[binary]" marker by the caller, keyed on dtype.
    return ""


def _preview_fixed_numeric(view: _ElementView) -> str:
    return "\\".join(view.numbers())


def _preview_tag(view: _ElementView) -> str:
    return "\\".join(view.tags())


def _preview_text(view: _ElementView) -> str:
    return truncate(view.text or "")


def _preview_unknown(view: _ElementView) -> str:
    if view.text:
        return truncate(view.text)
    if view.length:
        return f"<{view.length} bytes>"
    return ""


_PREVIEWS: dict[VRGroup, Callable[[_ElementView], str]] = {
    VRGroup.BINARY: _preview_binary,
    VRGroup.FIXED_NUMERIC: _preview_fixed_numeric,
    VRGroup.TAG: _preview_tag,
    VRGroup.TEXT_NUMERIC: _preview_text,
    VRGroup.TEXT: _preview_text,
    VRGroup.UNKNOWN: _preview_unknown,
}


# ---------------------------------------------------------------------------
# Tree
# ---------------------------------------------------------------------------

@dataclass
class HeaderNode:
    """One row of the header tree."""
    tag_hex: str
    keyword: str
    vr: Optional[str] = None
    length: Optional[int] = None
    vm: Optional[int] = None
    dtype: Optional[str] = None
    preview: str = ""
    children: Optional[list["HeaderNode"]] = None

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {
            "tag_hex": self.tag_hex,
            "keyword": self.keyword,
            "vr": self.vr,
            "length": self.length,
            "vm": self.vm,
            "dtype": self.dtype,
            "preview": self.preview,
        }
        if self.children is not None:
            out["children"] = [c.to_dict() for c in self.children]
        return out


class HeaderTreeBuilder:
    """
    Decode files into :class:`HeaderNode` trees.

    Parameters
    ----------
    dictionary : TagDictionary
        Shared, read-only tag dictionary.
    options : ScanOptions, optional
        Filtering and redaction switches.
    max_depth : int, optional
        Maximum sequence nesting.  Defaults to config value.
    """

    def __init__(
        self,
        dictionary: TagDictionary,
        options: Optional[ScanOptions] = None,
        max_depth: Optional[int] = None,
    ):
        self.dictionary = dictionary
        self.options = options or ScanOptions()
        self.max_depth = max_depth or CONFIG["headers"]["max_depth"]

    def decode(self, path: str) -> list[HeaderNode]:
        """
        Read *path* up to Pixel Data and return its header tree.

        Raises
        ------
        pydicom.errors.InvalidDicomError
            If the file is not a readable DICOM stream, or is cut short
            (a partial tree is never returned).
        HeaderDepthError
            If sequences nest deeper than ``max_depth``.
        """
        with open(path, "rb") as f:
            ds = read_complete(f, stop_before_pixels=True)
        return self.decode_dataset(ds)

    def decode_dataset(self, ds: Dataset) -> list[HeaderNode]:
        """Header tree of an already-read dataset, file-meta group first."""
        nodes: list[HeaderNode] = []
        file_meta = getattr(ds, "file_meta", None)
        if file_meta is not None:
            nodes.extend(self._walk(file_meta, depth=0))
        nodes.extend(self._walk(ds, depth=0))
        return nodes

    def _walk(self, ds: Dataset, depth: int) -> list[HeaderNode]:
        if depth > self.max_depth:
            raise HeaderDepthError(f"Sequence nesting deeper than {self.max_depth} levels")

        nodes = []
        for tag in sorted(ds.keys()):
            view = _ElementView(ds, tag, self.dictionary)
            if self.options.ignore_private and is_private(view.tag_hex):
                continue
            if self.options.ignore_bulk and view.group is VRGroup.BINARY:
                continue
            nodes.append(self._node(view, depth))
        return nodes

    def _node(self, view: _ElementView, depth: int) -> HeaderNode:
        if view.is_sequence:
            items = view.items
            return HeaderNode(
                tag_hex=view.tag_hex,
                keyword=view.keyword,
                vr=view.vr,
                length=view.length,
                vm=len(items),
                dtype=classify_dtype(view.vr),
                preview=_preview_sequence(view),
                children=[
                    HeaderNode(
                        tag_hex=f"{view.tag_hex}[{i}]",
                        keyword=f"Item {i + 1}",
                        children=self._walk(item, depth + 1) if item is not None else [],
                    )
                    for i, item in enumerate(items)
                ],
            )

        if self.options.redact_phi and view.keyword in PHI_KEYWORDS:
            preview = REDACTED
        else:
            preview = _PREVIEWS[view.group](view)

        needs_text = view.group not in (VRGroup.BINARY, VRGroup.SEQUENCE)
        return HeaderNode(
            tag_hex=view.tag_hex,
            keyword=view.keyword,
            vr=view.vr,
            length=view.length,
            vm=value_multiplicity(view.vr, view.length, view.text if needs_text else None),
            dtype=classify_dtype(view.vr),
            preview=preview,
        )

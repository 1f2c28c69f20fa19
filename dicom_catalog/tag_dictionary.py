"""
tag_dictionary.py - DICOM data-dictionary resolver.

Maps a tag such as ``(0008,0060)`` to its keyword (``Modality``) and VR
(``CS``).  The dictionary is loaded once per process from whichever source
answers first:

1. A known JSON file inside a configured dictionary package.
2. A dictionary object exported by a configured Python module
   (pydicom's ``_dicom_dict.DicomDictionary`` by default).
3. An empty map, in which case every lookup misses and callers fall back
   to "Private Tag" / "Unknown Tag".

Dictionary sources come in several layouts, so each source is passed
through a fixed, ordered list of parser strategies; the first one that
produces a non-empty map wins.

The loaded map is wrapped in a read-only ``MappingProxyType`` and shared
between concurrent jobs without locking.
"""

import importlib
import json
import logging
import re
import threading
from dataclasses import dataclass
from importlib.resources import files
from types import MappingProxyType
from typing import Any, Callable, Mapping, Optional

from dicom_catalog.config import CONFIG

logger = logging.getLogger(__name__)

_FLAT_HEX_RE = re.compile(r"^[0-9a-fA-F]{8}$")
_COMMA_RE = re.compile(r"^[0-9a-fA-F]{4},[0-9a-fA-F]{4}$")
_TAG_HEX_RE = re.compile(r"\(([0-9a-fA-F]{4}),([0-9a-fA-F]{4})\)")

# Nested-search depth limit; dictionary sources are never this deep.
_MAX_NESTING = 8


@dataclass(frozen=True)
class DictEntry:
    """One dictionary row: keyword plus VR (``None`` when unknown)."""
    keyword: str
    vr: Optional[str] = None


MISSING = DictEntry(keyword="", vr=None)


# ---------------------------------------------------------------------------
# Tag formatting helpers
# ---------------------------------------------------------------------------

def tag_hex(tag: int) -> str:
    """Render a 32-bit tag as ``(gggg,eeee)`` in lowercase hex."""
    return f"({tag >> 16:04x},{tag & 0xFFFF:04x})"


def is_private(tag_hex_str: str) -> bool:
    """True when the group number of ``(gggg,eeee)`` is odd."""
    m = _TAG_HEX_RE.search(tag_hex_str)
    if not m:
        return False
    return int(m.group(1), 16) % 2 == 1


def key_variants(tag_hex_str: str) -> list[str]:
    """
    Every textual key shape a dictionary might use for ``(gggg,eeee)``.

    Returns an empty list when *tag_hex_str* is not a recognisable tag.
    """
    m = _TAG_HEX_RE.search(tag_hex_str)
    if not m:
        return []
    g, e = m.group(1), m.group(2)
    flat = f"{g}{e}"
    return [
        flat.lower(), flat.upper(),
        f"{g},{e}".lower(), f"{g},{e}".upper(),
        f"x{flat.lower()}", f"x{flat.upper()}",
        f"{g}-{e}", f"{g}_{e}",
    ]


# ---------------------------------------------------------------------------
# Parser strategies
# ---------------------------------------------------------------------------

def _entry_from_value(value: Any) -> Optional[DictEntry]:
    """Build an entry from a record dict or a pydicom-style tuple."""
    if isinstance(value, Mapping):
        keyword = value.get("keyword") or value.get("name") or ""
        vr = value.get("vr") or value.get("VR") or None
        return DictEntry(keyword=str(keyword), vr=str(vr) if vr else None)
    # pydicom layout: (VR, VM, name, retired, keyword)
    if isinstance(value, (tuple, list)) and len(value) >= 5:
        vr, _vm, name, _retired, keyword = value[:5]
        return DictEntry(keyword=str(keyword or name or ""), vr=str(vr) if vr else None)
    return None


def _first_key(raw: Any) -> Any:
    return next(iter(raw), None) if isinstance(raw, Mapping) else None


def parse_flat_hex_map(raw: Any) -> Optional[dict[str, DictEntry]]:
    """``{"00080060": {"name": "Modality", "vr": "CS"}, ...}``"""
    first = _first_key(raw)
    if not isinstance(first, str) or not _FLAT_HEX_RE.match(first):
        return None
    out = {}
    for key, value in raw.items():
        entry = _entry_from_value(value)
        if entry is not None and isinstance(key, str):
            out[key.lower()] = entry
    return out or None


def parse_comma_map(raw: Any) -> Optional[dict[str, DictEntry]]:
    """``{"0008,0060": {...}, ...}``"""
    first = _first_key(raw)
    if not isinstance(first, str) or not _COMMA_RE.match(first):
        return None
    out = {}
    for key, value in raw.items():
        entry = _entry_from_value(value)
        if entry is not None and isinstance(key, str):
            out[key.replace(",", "").lower()] = entry
    return out or None


def parse_record_array(raw: Any) -> Optional[dict[str, DictEntry]]:
    """``[{"tag": "00080060", "name": "Modality", "vr": "CS"}, ...]``"""
    if not isinstance(raw, (list, tuple)):
        return None
    out = {}
    for record in raw:
        if not isinstance(record, Mapping):
            continue
        tag = re.sub(r"[^0-9a-fA-F]", "", str(record.get("tag") or record.get("Tag") or ""))
        if not _FLAT_HEX_RE.match(tag):
            continue
        entry = _entry_from_value(record)
        if entry is not None:
            out[tag.lower()] = entry
    return out or None


def parse_int_keyed(raw: Any) -> Optional[dict[str, DictEntry]]:
    """pydicom's ``DicomDictionary``: ``{0x00080060: ('CS', '1', 'Modality', '', 'Modality')}``"""
    first = _first_key(raw)
    if not isinstance(first, int) or isinstance(first, bool):
        return None
    out = {}
    for key, value in raw.items():
        entry = _entry_from_value(value)
        if entry is not None and isinstance(key, int):
            out[f"{key:08x}"] = entry
    return out or None


def parse_nested(raw: Any, _depth: int = 0) -> Optional[dict[str, DictEntry]]:
    """Search nested mappings for the first value any strategy accepts."""
    if not isinstance(raw, Mapping) or _depth >= _MAX_NESTING:
        return None
    for value in raw.values():
        if isinstance(value, (Mapping, list, tuple)):
            found = normalize(value, _depth=_depth + 1)
            if found:
                return found
    return None


_STRATEGIES: list[tuple[str, Callable[[Any], Optional[dict[str, DictEntry]]]]] = [
    ("flat-hex-map", parse_flat_hex_map),
    ("comma-map", parse_comma_map),
    ("array-of-records", parse_record_array),
    ("int-keyed", parse_int_keyed),
]


def normalize(raw: Any, _depth: int = 0) -> dict[str, DictEntry]:
    """
    Normalise any supported dictionary layout into ``{"ggggeeee": DictEntry}``.

    Strategies are tried in a fixed order and the first non-empty result
    wins; nested search runs last.  Unrecognised input yields ``{}``.
    """
    for name, strategy in _STRATEGIES:
        found = strategy(raw)
        if found:
            logger.debug("Dictionary shape matched %s (%d entries)", name, len(found))
            return found
    return parse_nested(raw, _depth=_depth) or {}


# ---------------------------------------------------------------------------
# Sources
# ---------------------------------------------------------------------------

def _load_from_package(package: Optional[str], resources: list[str]) -> dict[str, DictEntry]:
    if not package:
        return {}
    try:
        base = files(package)
    except (ImportError, TypeError) as exc:
        logger.warning("Dictionary package %s not resolvable: %s", package, exc)
        return {}

    for rel in resources:
        candidate = base
        for part in rel.split("/"):
            candidate = candidate.joinpath(part)
        if not candidate.is_file():
            continue
        try:
            raw = json.loads(candidate.read_text(encoding="utf-8"))
        except (OSError, ValueError) as exc:
            logger.warning("Could not read dictionary file %s: %s", rel, exc)
            continue
        found = normalize(raw)
        if found:
            logger.info("Loaded %d dictionary entries from %s/%s", len(found), package, rel)
            return found
    return {}


def _load_from_module(module: Optional[str], attribute: Optional[str]) -> dict[str, DictEntry]:
    if not module:
        return {}
    try:
        mod = importlib.import_module(module)
    except ImportError as exc:
        logger.warning("Dictionary module %s not importable: %s", module, exc)
        return {}

    if attribute and hasattr(mod, attribute):
        raw = getattr(mod, attribute)
    else:
        raw = {k: v for k, v in vars(mod).items() if not k.startswith("_")}
    found = normalize(raw)
    if found:
        logger.info("Loaded %d dictionary entries from module %s", len(found), module)
    return found


def load(
    package: Optional[str] = None,
    resources: Optional[list[str]] = None,
    module: Optional[str] = None,
    attribute: Optional[str] = None,
) -> dict[str, DictEntry]:
    """
    Load and normalise the tag dictionary; first non-empty source wins.

    Parameters
    ----------
    package : str, optional
        Importable package holding JSON dictionary files.
    resources : list[str], optional
        Relative file names to try inside *package*, in order.
    module : str, optional
        Module to import if no JSON file matched.
    attribute : str, optional
        Attribute of *module* holding the dictionary.  When absent the
        module's public namespace is searched.

    Returns
    -------
    dict
        ``{"ggggeeee": DictEntry}``; empty when every source failed.
    """
    entries = _load_from_package(package, resources or [])
    if entries:
        return entries
    entries = _load_from_module(module, attribute)
    if entries:
        return entries
    logger.warning("No tag dictionary available; keywords will not be resolved.")
    return {}


# ---------------------------------------------------------------------------
# Resolver
# ---------------------------------------------------------------------------

class TagDictionary:
    """Read-only tag → DictEntry resolver."""

    _shared: Optional["TagDictionary"] = None
    _shared_lock = threading.Lock()

    def __init__(self, entries: Optional[Mapping[str, DictEntry]] = None):
        self._entries = MappingProxyType(dict(entries or {}))

    def __len__(self) -> int:
        return len(self._entries)

    @property
    def entries(self) -> Mapping[str, DictEntry]:
        return self._entries

    def lookup(self, tag_hex_str: str) -> DictEntry:
        """Resolve ``(gggg,eeee)``; returns ``DictEntry("", None)`` on a miss."""
        for key in key_variants(tag_hex_str):
            hit = self._entries.get(key)
            if hit is not None:
                return hit
        return MISSING

    @classmethod
    def from_config(cls, cfg: Optional[dict] = None) -> "TagDictionary":
        cfg = cfg or CONFIG["dictionary"]
        return cls(load(
            package=cfg.get("package"),
            resources=cfg.get("resources"),
            module=cfg.get("module"),
            attribute=cfg.get("attribute"),
        ))

    @classmethod
    def shared(cls) -> "TagDictionary":
        """The process-wide instance, loaded from CONFIG on first use."""
        if cls._shared is None:
            with cls._shared_lock:
                if cls._shared is None:
                    cls._shared = cls.from_config()
        return cls._shared

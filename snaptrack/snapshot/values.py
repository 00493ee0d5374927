"""
Typed parameter values.

A ParameterValue decouples one parameter's value from host and storage quirks:
equality is computed from the raw (unformatted) value, never from the
locale/unit dependent display text.
"""

import logging
import math
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Optional

logger = logging.getLogger(__name__)

DEFAULT_DOUBLE_TOLERANCE = 0.001

# Reference ids meaning "no value"
INVALID_REFERENCE_IDS = {-1, 0}

# Reference labels meaning "no value" (e.g. phase demolished = None)
NONE_LABELS = {"none", "aucune", "aucun(e)", "(none)", "<none>", "<aucun>"}

UNSET_DISPLAY = "(unset)"


class StorageType(str, Enum):
    """Storage tag of a parameter value."""
    STRING = "String"
    INTEGER = "Integer"
    DOUBLE = "Double"
    REFERENCE = "Reference"

    @classmethod
    def parse(cls, tag: Any) -> Optional["StorageType"]:
        """Parse a stored tag, accepting legacy spellings. None if unknown."""
        if isinstance(tag, StorageType):
            return tag
        if tag is None:
            return None
        return _TAG_ALIASES.get(str(tag).strip().lower())


_TAG_ALIASES = {
    "string": StorageType.STRING,
    "text": StorageType.STRING,
    "integer": StorageType.INTEGER,
    "int": StorageType.INTEGER,
    "double": StorageType.DOUBLE,
    "float": StorageType.DOUBLE,
    "reference": StorageType.REFERENCE,
    "elementid": StorageType.REFERENCE,
}


def _is_blank(value: Any) -> bool:
    return value is None or (isinstance(value, str) and value.strip() == "")


def coerce_int(value: Any) -> Optional[int]:
    """
    Widen a loosely-typed integer to a Python int.

    Accepts ints of any width, booleans, integral floats and numeric strings.
    Returns None for blank input; raises ValueError when not integral.
    """
    if _is_blank(value):
        return None
    if isinstance(value, bool):
        return int(value)
    if isinstance(value, int):
        return value
    if isinstance(value, float):
        if not math.isfinite(value) or not value.is_integer():
            raise ValueError(f"not an integer: {value!r}")
        return int(value)
    if isinstance(value, str):
        text = value.strip()
        try:
            return int(text)
        except ValueError:
            return coerce_int(float(text))
    raise ValueError(f"not an integer: {value!r}")


def coerce_float(value: Any) -> Optional[float]:
    """Widen a loosely-typed number to float. None for blank input."""
    if _is_blank(value):
        return None
    if isinstance(value, bool):
        return float(value)
    if isinstance(value, (int, float)):
        return float(value)
    if isinstance(value, str):
        return float(value.strip())
    raise ValueError(f"not a number: {value!r}")


def reference_id(value: Any) -> Optional[int]:
    """
    Numeric reference id, or None when the value is not numeric.

    Sentinels (-1, 0) are returned as-is; callers test them with
    is_unset_reference().
    """
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, float) and value.is_integer():
        return int(value)
    if isinstance(value, str):
        text = value.strip()
        if text.lstrip("+-").isdigit():
            return int(text)
    return None


def is_unset_reference(raw: Any) -> bool:
    """True for every spelling of "no value" a Reference may carry."""
    if raw is None:
        return True
    if isinstance(raw, str) and is_none_label(raw):
        return True
    ref = reference_id(raw)
    return ref is not None and ref in INVALID_REFERENCE_IDS


def is_none_label(label: Optional[str]) -> bool:
    """True if a reference label stands for "no value"."""
    return _is_blank(label) or label.strip().lower() in NONE_LABELS


@dataclass(frozen=True)
class ParameterValue:
    """
    Typed, comparable value of a single parameter.

    raw_value by storage type:
    - String: the exact text ("" when empty)
    - Integer: int, or None when unset
    - Double: float in internal units, or None when unset
    - Reference: numeric id; legacy records may hold the label instead
    """

    storage_type: StorageType
    raw_value: Any = None
    display_value: str = ""
    is_type_level: bool = False

    # =========================================================================
    # Constructors
    # =========================================================================

    @classmethod
    def string(cls, text: Optional[str], is_type_level: bool = False) -> "ParameterValue":
        text = "" if text is None else str(text)
        return cls(StorageType.STRING, text, text, is_type_level)

    @classmethod
    def integer(
        cls,
        value: Optional[int],
        display: Optional[str] = None,
        is_type_level: bool = False,
    ) -> "ParameterValue":
        if value is None:
            return cls(StorageType.INTEGER, None, UNSET_DISPLAY, is_type_level)
        value = coerce_int(value)
        return cls(StorageType.INTEGER, value, display or str(value), is_type_level)

    @classmethod
    def double(
        cls,
        value: Optional[float],
        display: Optional[str] = None,
        is_type_level: bool = False,
    ) -> "ParameterValue":
        if value is None:
            return cls(StorageType.DOUBLE, None, UNSET_DISPLAY, is_type_level)
        value = float(value)
        return cls(StorageType.DOUBLE, value, display or repr(value), is_type_level)

    @classmethod
    def reference(
        cls,
        ref: Optional[int],
        display: Optional[str] = None,
        is_type_level: bool = False,
    ) -> "ParameterValue":
        raw = -1 if ref is None else ref
        if display is None:
            display = "" if is_unset_reference(raw) else str(raw)
        return cls(StorageType.REFERENCE, raw, display, is_type_level)

    @classmethod
    def from_live(cls, handle) -> Optional["ParameterValue"]:
        """
        Read a live parameter handle.

        raw_value is taken from the handle's unformatted value; the host's
        formatted text only ever goes to display_value.
        """
        if handle is None:
            return None

        storage_type = StorageType.parse(handle.storage_type)
        display = handle.display
        is_type_level = bool(handle.is_type_level)

        if storage_type == StorageType.INTEGER:
            if not handle.has_value or handle.value is None:
                return cls(StorageType.INTEGER, None, UNSET_DISPLAY, is_type_level)
            value = coerce_int(handle.value)
            return cls(StorageType.INTEGER, value, display or str(value), is_type_level)

        if storage_type == StorageType.DOUBLE:
            if not handle.has_value or handle.value is None:
                return cls(StorageType.DOUBLE, None, UNSET_DISPLAY, is_type_level)
            value = float(handle.value)
            return cls(StorageType.DOUBLE, value, display or repr(value), is_type_level)

        if storage_type == StorageType.REFERENCE:
            raw = handle.value if handle.has_value and handle.value is not None else -1
            if not display:
                display = "" if is_unset_reference(raw) else str(raw)
            return cls(StorageType.REFERENCE, raw, display, is_type_level)

        text = "" if handle.value is None else str(handle.value)
        return cls(StorageType.STRING, text, text, is_type_level)

    @classmethod
    def from_record(cls, obj: Any, is_type_level: Optional[bool] = None) -> Optional["ParameterValue"]:
        """
        Rebuild a value from a loosely-typed deserialized payload.

        Handles the stored dict shape, legacy tag names, bare scalars without
        a tag, integers widened to 64 bits or sent as floats/strings, and
        references persisted as labels. Payloads that cannot be read as
        their tag are degraded to a String value and logged.
        """
        if obj is None:
            return None
        if isinstance(obj, ParameterValue):
            return obj

        if isinstance(obj, dict):
            tag = _first_present(obj, "StorageType", "storage_type", "storageType")
            raw = _first_present(obj, "RawValue", "raw_value", "rawValue")
            display = _first_present(obj, "DisplayValue", "display_value", "displayValue")
            type_flag = _first_present(obj, "IsTypeParameter", "is_type_level", "isTypeLevel")
        else:
            tag, raw, display, type_flag = None, obj, None, None

        if is_type_level is None:
            is_type_level = bool(type_flag) if type_flag is not None else False

        storage_type = StorageType.parse(tag)
        if storage_type is None:
            if tag is not None:
                logger.warning("Unknown storage tag %r, inferring from value", tag)
            storage_type = _infer_storage_type(raw)

        display = None if display is None else str(display)

        try:
            return cls._rebuild(storage_type, raw, display, is_type_level)
        except (ValueError, TypeError) as e:
            logger.warning(
                "Unreadable %s payload %r (%s); keeping it as text",
                storage_type.value, raw, e,
            )
            text = display if display is not None else ("" if raw is None else str(raw))
            return cls(StorageType.STRING, text, text, is_type_level)

    @classmethod
    def _rebuild(
        cls,
        storage_type: StorageType,
        raw: Any,
        display: Optional[str],
        is_type_level: bool,
    ) -> "ParameterValue":
        if storage_type == StorageType.STRING:
            text = "" if raw is None else str(raw)
            return cls(StorageType.STRING, text, display if display is not None else text, is_type_level)

        if storage_type == StorageType.INTEGER:
            value = coerce_int(raw)
            if value is None:
                return cls(StorageType.INTEGER, None, display or UNSET_DISPLAY, is_type_level)
            return cls(StorageType.INTEGER, value, display or str(value), is_type_level)

        if storage_type == StorageType.DOUBLE:
            value = coerce_float(raw)
            if value is None:
                return cls(StorageType.DOUBLE, None, display or UNSET_DISPLAY, is_type_level)
            return cls(StorageType.DOUBLE, value, display or repr(value), is_type_level)

        # Reference: numeric id when present, else the legacy label
        ref = reference_id(raw)
        if ref is not None:
            if display is None:
                display = "" if ref in INVALID_REFERENCE_IDS else str(ref)
            return cls(StorageType.REFERENCE, ref, display, is_type_level)
        label = "" if raw is None else str(raw)
        if display is None:
            display = label
        return cls(StorageType.REFERENCE, label, display, is_type_level)

    # =========================================================================
    # Comparison
    # =========================================================================

    @property
    def is_unset(self) -> bool:
        if self.storage_type == StorageType.REFERENCE:
            return is_unset_reference(self.raw_value)
        if self.storage_type == StorageType.STRING:
            return (self.raw_value or "") == ""
        return self.raw_value is None

    @property
    def reference_label(self) -> str:
        """Label to re-resolve a Reference by name."""
        if self.display_value:
            return self.display_value
        if isinstance(self.raw_value, str):
            return self.raw_value
        return ""

    def equals(self, other: Optional["ParameterValue"], double_tolerance: float = DEFAULT_DOUBLE_TOLERANCE) -> bool:
        return values_equal(self, other, double_tolerance)

    # =========================================================================
    # Serialization
    # =========================================================================

    def to_dict(self) -> Dict[str, Any]:
        """Stored wire shape."""
        return {
            "StorageType": self.storage_type.value,
            "RawValue": self.raw_value,
            "DisplayValue": self.display_value,
            "IsTypeParameter": self.is_type_level,
        }

    def __str__(self) -> str:
        return self.display_value


def values_equal(
    a: Optional[ParameterValue],
    b: Optional[ParameterValue],
    double_tolerance: float = DEFAULT_DOUBLE_TOLERANCE,
) -> bool:
    """Compare two values on their raw payload (display text is ignored)."""
    if a is None or b is None:
        return a is None and b is None

    if a.storage_type != b.storage_type:
        return False

    if a.storage_type == StorageType.STRING:
        return (a.raw_value or "") == (b.raw_value or "")

    if a.storage_type == StorageType.INTEGER:
        if a.raw_value is None and b.raw_value is None:
            return True
        if a.raw_value is None or b.raw_value is None:
            return False
        return coerce_int(a.raw_value) == coerce_int(b.raw_value)

    if a.storage_type == StorageType.DOUBLE:
        if a.raw_value is None and b.raw_value is None:
            return True
        if a.raw_value is None or b.raw_value is None:
            return False
        return abs(float(a.raw_value) - float(b.raw_value)) <= double_tolerance

    # Reference
    a_unset = is_unset_reference(a.raw_value)
    b_unset = is_unset_reference(b.raw_value)
    if a_unset or b_unset:
        return a_unset and b_unset
    a_id = reference_id(a.raw_value)
    b_id = reference_id(b.raw_value)
    if a_id is not None and b_id is not None:
        return a_id == b_id
    # Legacy records stored only the label
    return (a.display_value or "") == (b.display_value or "")


def _first_present(obj: Dict[str, Any], *keys: str) -> Any:
    for key in keys:
        if key in obj:
            return obj[key]
    return None


def _infer_storage_type(raw: Any) -> StorageType:
    if isinstance(raw, bool) or isinstance(raw, int):
        return StorageType.INTEGER
    if isinstance(raw, float):
        return StorageType.DOUBLE
    return StorageType.STRING

"""Validation rules, tag parsing and field discovery on dataclass instances.

Rules are attached to dataclass fields through field metadata, for example
``field(default="", metadata={"validatex": "required,min=3"})``.
"""

from __future__ import annotations

import dataclasses
import numbers
import re
import unicodedata
from collections.abc import Sized
from dataclasses import dataclass, field
from email.utils import getaddresses
from typing import Any, Callable, Iterator
from urllib.parse import urlsplit

TAG_NAME = "validatex"

ValidationFunc = Callable[[Any, str], bool]


class NotStructError(TypeError):
    """Raised when a value to inspect is not a dataclass instance."""

    def __init__(self, message: str = "value must be a struct") -> None:
        super().__init__(message)


@dataclass(frozen=True)
class Rule:
    """One rule from a tag: its name and optional parameter."""

    name: str
    param: str = ""


@dataclass
class FieldInfo:
    """A tagged field of a dataclass instance together with its rules."""

    name: str
    value: Any
    rules: list[Rule] = field(default_factory=list)
    type: Any = None


def parse_tag(tag: str) -> list[Rule]:
    """Split a comma-separated rule list such as ``"required,min=3"``."""
    rules: list[Rule] = []
    for part in tag.split(","):
        part = part.strip()
        if not part:
            continue
        name, _, param = part.partition("=")
        rules.append(Rule(name, param))
    return rules


def _is_struct(value: Any) -> bool:
    return dataclasses.is_dataclass(value) and not isinstance(value, type)


def _is_validatable(value: Any) -> bool:
    return callable(getattr(value, "validate", None))


def _tagged_fields(obj: Any, tag_name: str) -> Iterator[tuple[dataclasses.Field, Any, str]]:
    """Yield public fields of a dataclass instance that carry a rule tag."""
    for fld in dataclasses.fields(obj):
        if fld.name.startswith("_"):
            continue
        tag = fld.metadata.get(tag_name, "")
        if not tag or tag == "-":
            continue
        yield fld, getattr(obj, fld.name), tag


def is_zero(value: Any) -> bool:
    """Return whether value is empty: None, zero, False, empty, or an all-zero dataclass."""
    if value is None:
        return True
    if isinstance(value, bool):
        return not value
    if isinstance(value, numbers.Number):
        return value == 0
    if isinstance(value, Sized):
        return len(value) == 0
    if _is_struct(value):
        return all(is_zero(getattr(value, fld.name)) for fld in dataclasses.fields(value))
    return False


def struct_fields(obj: Any) -> dict[str, FieldInfo]:
    """Collect tagged fields, descending into nested dataclasses with dotted keys.

    None yields no fields; anything that is not a dataclass instance raises
    NotStructError. Nested values that validate themselves are not descended into.
    """
    if obj is None:
        return {}
    if not _is_struct(obj):
        raise NotStructError()
    fields: dict[str, FieldInfo] = {}
    for fld, value, tag in _tagged_fields(obj, TAG_NAME):
        fields[fld.name] = FieldInfo(fld.name, value, parse_tag(tag), fld.type)
        if _is_struct(value) and not _is_validatable(value):
            for key, info in struct_fields(value).items():
                fields[f"{fld.name}.{key}"] = info
    return fields


def _format(value: Any) -> str:
    if value is None:
        return "<nil>"
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, float) and value.is_integer() and abs(value) < 1e21:
        return str(int(value))
    return str(value)


_INT_PARAM = re.compile(r"[+-]?[0-9]+")


def _bound(param: str) -> int | None:
    return int(param) if _INT_PARAM.fullmatch(param) else None


def _measure(value: Any) -> int | float | None:
    """The quantity that min and max compare: a number, or a length."""
    if isinstance(value, bool):
        return None
    if isinstance(value, str):
        # Lengths of strings are counted in UTF-8 bytes.
        return len(value.encode("utf-8"))
    if isinstance(value, (int, float)):
        return value
    if isinstance(value, Sized):
        return len(value)
    return None


def validate_required(value: Any, param: str = "") -> bool:
    return not is_zero(value)


_ATOM = r"[A-Za-z0-9!#$%&'*+/=?^_`{|}~-]+"
_ADDR_SPEC = re.compile(rf"{_ATOM}(?:\.{_ATOM})*@{_ATOM}(?:\.{_ATOM})*")


def validate_email(value: Any, param: str = "") -> bool:
    """Accept a single address, bare or with a display name."""
    if not isinstance(value, str) or not value.strip():
        return False
    addresses = getaddresses([value])
    if len(addresses) != 1:
        return False
    _, addr = addresses[0]
    return bool(_ADDR_SPEC.fullmatch(addr))


_SCHEME = re.compile(r"[A-Za-z][A-Za-z0-9+.-]*:")


def validate_url(value: Any, param: str = "") -> bool:
    """Accept an absolute URL or absolute path that contains a dot."""
    if not isinstance(value, str) or not value:
        return False
    if any(ord(ch) < 0x20 or ord(ch) == 0x7F for ch in value):
        return False
    if not (value.startswith("/") or _SCHEME.match(value)):
        return False
    try:
        parts = urlsplit(value)
    except ValueError:
        return False
    if any(ch.isspace() for ch in parts.netloc):
        return False
    return "." in value


def validate_min(value: Any, param: str) -> bool:
    bound = _bound(param)
    measure = _measure(value)
    if bound is None or measure is None:
        return False
    return measure >= bound


def validate_max(value: Any, param: str) -> bool:
    bound = _bound(param)
    measure = _measure(value)
    if bound is None or measure is None:
        return False
    return measure <= bound


def validate_one_of(value: Any, param: str) -> bool:
    """Accept a value whose text is one of the space-separated options."""
    allowed = param.split()
    if not allowed:
        return False
    return _format(value) in allowed


def validate_regex(value: Any, param: str) -> bool:
    if not isinstance(value, str):
        return False
    try:
        pattern = re.compile(param)
    except re.error:
        return False
    return pattern.search(value) is not None


_UUID = re.compile(r"[a-f0-9]{8}-[a-f0-9]{4}-[a-f0-9]{4}-[a-f0-9]{4}-[a-f0-9]{12}")


def validate_uuid(value: Any, param: str = "") -> bool:
    return isinstance(value, str) and _UUID.fullmatch(value.lower()) is not None


def _is_letter(ch: str) -> bool:
    return unicodedata.category(ch).startswith("L")


def _is_number(ch: str) -> bool:
    return unicodedata.category(ch).startswith("N")


def validate_alphanum(value: Any, param: str = "") -> bool:
    return isinstance(value, str) and all(_is_letter(ch) or _is_number(ch) for ch in value)


def validate_alpha(value: Any, param: str = "") -> bool:
    return isinstance(value, str) and all(_is_letter(ch) for ch in value)


def validate_numeric(value: Any, param: str = "") -> bool:
    return isinstance(value, str) and all(_is_number(ch) for ch in value)


_builtin_validation_funcs: dict[str, ValidationFunc] = {
    "required": validate_required,
    "email": validate_email,
    "url": validate_url,
    "min": validate_min,
    "max": validate_max,
    "oneof": validate_one_of,
    "regex": validate_regex,
    "uuid": validate_uuid,
    "alphanum": validate_alphanum,
    "alpha": validate_alpha,
    "numeric": validate_numeric,
}

_custom_validation_funcs: dict[str, ValidationFunc] = {}


def register_validation_func(name: str, fn: ValidationFunc) -> None:
    """Register a rule; registered rules take precedence over built-in ones."""
    _custom_validation_funcs[name] = fn


def get_validation_func(name: str) -> ValidationFunc | None:
    """Look a rule up, registered rules first; None when unknown."""
    fn = _custom_validation_funcs.get(name)
    if fn is not None:
        return fn
    return _builtin_validation_funcs.get(name)
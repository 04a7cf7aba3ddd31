"""Validation of dataclass instances against the rules in their field tags."""

from __future__ import annotations

from dataclasses import replace
from typing import Any, Callable, Iterable, Mapping, Protocol, runtime_checkable

from .errors import CraftError
from .rules import (
    TAG_NAME,
    NotStructError,
    Rule,
    ValidationFunc,
    _is_struct,
    _tagged_fields,
    get_validation_func,
    is_zero,
    parse_tag,
    struct_fields,
)
from .validation_errors import (
    INVALID_STRUCT,
    VALIDATION_FAILED,
    VALIDATOR_ERRORS,
    ValidationError,
    ValidationErrors,
    new_validation_error,
)


@runtime_checkable
class Validatable(Protocol):
    """An object that validates itself, raising on failure."""

    def validate(self) -> None: ...


def _apply_rules(
    field_name: str,
    value: Any,
    rules: Iterable[Rule],
    lookup: Callable[[str], ValidationFunc | None],
) -> list[ValidationError]:
    errors: list[ValidationError] = []
    for rule in rules:
        fn = lookup(rule.name)
        if fn is None:
            errors.append(
                new_validation_error(field_name, rule.name, rule.param, value, "unknown validation rule")
            )
            continue
        # Empty values only fail the required rule.
        if rule.name != "required" and is_zero(value):
            continue
        if not fn(value, rule.param):
            errors.append(new_validation_error(field_name, rule.name, rule.param, value))
    return errors


def _as_error(exc: BaseException) -> CraftError | None:
    if isinstance(exc, ValidationErrors):
        return exc.to_error()
    current: BaseException | None = exc
    seen: set[int] = set()
    while current is not None and id(current) not in seen:
        seen.add(id(current))
        if isinstance(current, CraftError):
            return current
        current = current.__cause__
    return VALIDATOR_ERRORS.new_with_message(VALIDATION_FAILED, str(exc))


def validate(obj: Any) -> None:
    """Validate obj, raising ValidationErrors listing every failed rule.

    Objects that validate themselves are delegated to; anything that is not a
    dataclass instance raises an INVALID_STRUCT error. None passes.
    """
    if isinstance(obj, Validatable):
        obj.validate()
        return
    try:
        fields = struct_fields(obj)
    except NotStructError:
        raise VALIDATOR_ERRORS.new(INVALID_STRUCT) from None
    errors: list[ValidationError] = []
    for name, info in fields.items():
        errors.extend(_apply_rules(name, info.value, info.rules, get_validation_func))
    if errors:
        raise ValidationErrors(errors)


def validate_with_error(obj: Any) -> CraftError | None:
    """Validate obj and return a structured error, or None when it passes."""
    try:
        validate(obj)
    except Exception as exc:
        return _as_error(exc)
    return None


def validate_field(value: Any, rule: str) -> None:
    """Check a single value against a rule list such as ``"required,min=3"``."""
    errors = _apply_rules("", value, parse_tag(rule), get_validation_func)
    if errors:
        raise ValidationErrors(errors)


def validate_field_with_error(field_name: str, value: Any, rule: str) -> CraftError | None:
    """Check a single named value and return a structured error, or None."""
    try:
        validate_field(value, rule)
    except ValidationErrors as exc:
        return ValidationErrors(replace(err, field=field_name) for err in exc).to_error()
    except Exception as exc:
        return VALIDATOR_ERRORS.new_with_message(
            VALIDATION_FAILED, f"Validation failed for field {field_name}: {exc}"
        ).with_detail("field", field_name)
    return None


class CustomValidator:
    """A validator with its own tag name and its own rules, which shadow the shared ones."""

    def __init__(
        self, tag_name: str = TAG_NAME, rules: Mapping[str, ValidationFunc] | None = None
    ) -> None:
        self.tag_name = tag_name
        self.rules: dict[str, ValidationFunc] = dict(rules or {})

    def register_rule(self, name: str, fn: ValidationFunc) -> CustomValidator:
        self.rules[name] = fn
        return self

    def with_tag_name(self, tag_name: str) -> CustomValidator:
        self.tag_name = tag_name
        return self

    def _lookup(self, name: str) -> ValidationFunc | None:
        fn = self.rules.get(name)
        return fn if fn is not None else get_validation_func(name)

    def validate(self, obj: Any) -> None:
        """Validate obj using this validator's tag name and rules."""
        if isinstance(obj, Validatable):
            obj.validate()
            return
        if obj is None:
            return
        if not _is_struct(obj):
            raise VALIDATOR_ERRORS.new(INVALID_STRUCT)
        errors: list[ValidationError] = []
        for fld, value, tag in _tagged_fields(obj, self.tag_name):
            errors.extend(_apply_rules(fld.name, value, parse_tag(tag), self._lookup))
            if _is_struct(value) and not isinstance(value, Validatable):
                try:
                    self.validate(value)
                except ValidationErrors as exc:
                    errors.extend(replace(err, field=f"{fld.name}.{err.field}") for err in exc)
                except Exception as exc:
                    errors.append(new_validation_error(fld.name, "", "", value, str(exc)))
        if errors:
            raise ValidationErrors(errors)

    def validate_with_error(self, obj: Any) -> CraftError | None:
        try:
            self.validate(obj)
        except Exception as exc:
            return _as_error(exc)
        return None
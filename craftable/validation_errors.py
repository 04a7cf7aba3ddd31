"""Validation error values, their collection and the validator error catalogue."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Iterable, Iterator

from .errors import CraftError, ErrorCode, ErrorRegistry, ErrorType

VALIDATOR_ERRORS = ErrorRegistry("VALIDATOR")

VALIDATION_FAILED = VALIDATOR_ERRORS.register(
    "VALIDATION_FAILED", ErrorType.VALIDATION, 400, "Validation failed"
)
REQUIRED_FIELD = VALIDATOR_ERRORS.register(
    "REQUIRED_FIELD", ErrorType.VALIDATION, 400, "Field is required"
)
INVALID_EMAIL = VALIDATOR_ERRORS.register(
    "INVALID_EMAIL", ErrorType.VALIDATION, 400, "Invalid email format"
)
INVALID_URL = VALIDATOR_ERRORS.register("INVALID_URL", ErrorType.VALIDATION, 400, "Invalid URL format")
BELOW_MIN = VALIDATOR_ERRORS.register("BELOW_MIN", ErrorType.VALIDATION, 400, "Value below minimum")
ABOVE_MAX = VALIDATOR_ERRORS.register("ABOVE_MAX", ErrorType.VALIDATION, 400, "Value above maximum")
INVALID_OPTION = VALIDATOR_ERRORS.register("INVALID_OPTION", ErrorType.VALIDATION, 400, "Invalid option")
PATTERN_MISMATCH = VALIDATOR_ERRORS.register(
    "PATTERN_MISMATCH", ErrorType.VALIDATION, 400, "Value doesn't match pattern"
)
INVALID_UUID = VALIDATOR_ERRORS.register("INVALID_UUID", ErrorType.VALIDATION, 400, "Invalid UUID format")
INVALID_ALPHANUM = VALIDATOR_ERRORS.register(
    "INVALID_ALPHANUM", ErrorType.VALIDATION, 400, "Value contains non-alphanumeric characters"
)
INVALID_ALPHA = VALIDATOR_ERRORS.register(
    "INVALID_ALPHA", ErrorType.VALIDATION, 400, "Value contains non-alphabetic characters"
)
INVALID_NUMERIC = VALIDATOR_ERRORS.register(
    "INVALID_NUMERIC", ErrorType.VALIDATION, 400, "Value contains non-numeric characters"
)
UNKNOWN_VALIDATOR = VALIDATOR_ERRORS.register(
    "UNKNOWN_VALIDATOR", ErrorType.INTERNAL, 500, "Unknown validator"
)
INVALID_STRUCT = VALIDATOR_ERRORS.register(
    "INVALID_STRUCT", ErrorType.BAD_REQUEST, 400, "Value is not a struct"
)
UNSUPPORTED_TYPE = VALIDATOR_ERRORS.register(
    "UNSUPPORTED_TYPE", ErrorType.INTERNAL, 500, "Unsupported type"
)
INVALID_VALIDATION = VALIDATOR_ERRORS.register(
    "INVALID_VALIDATION", ErrorType.INTERNAL, 500, "Invalid validation rule"
)

_DEFAULT_MESSAGES: dict[str, str] = {
    "required": "field is required",
    "email": "must be a valid email address",
    "url": "must be a valid URL",
    "min": "must be at least {param}",
    "max": "must be at most {param}",
    "oneof": "must be one of: {param}",
    "regex": "must match the required pattern",
    "uuid": "must be a valid UUID",
    "alphanum": "must contain only alphanumeric characters",
    "alpha": "must contain only alphabetic characters",
    "numeric": "must contain only numeric characters",
}

_RULE_CODES: dict[str, ErrorCode] = {
    "required": REQUIRED_FIELD,
    "email": INVALID_EMAIL,
    "url": INVALID_URL,
    "min": BELOW_MIN,
    "max": ABOVE_MAX,
    "oneof": INVALID_OPTION,
    "regex": PATTERN_MISMATCH,
    "uuid": INVALID_UUID,
    "alphanum": INVALID_ALPHANUM,
    "alpha": INVALID_ALPHA,
    "numeric": INVALID_NUMERIC,
}

_custom_error_messages: dict[str, str] = {}


def _format_value(value: Any) -> str:
    if value is None:
        return "<nil>"
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


@dataclass
class ValidationError:
    """A failed rule on one field."""

    field: str
    rule: str
    param: str = ""
    value: Any = None
    message: str = ""

    def __str__(self) -> str:
        return f"validation failed on field '{self.field}': {self.message}"


class ValidationErrors(Exception):
    """A collection of validation errors, raisable as one exception."""

    def __init__(self, errors: Iterable[ValidationError] = ()) -> None:
        self.errors: list[ValidationError] = list(errors)
        super().__init__(str(self))

    def append(self, error: ValidationError) -> None:
        self.errors.append(error)

    def extend(self, errors: Iterable[ValidationError]) -> None:
        self.errors.extend(errors)

    def __len__(self) -> int:
        return len(self.errors)

    def __iter__(self) -> Iterator[ValidationError]:
        return iter(self.errors)

    def __getitem__(self, index: int) -> ValidationError:
        return self.errors[index]

    def __str__(self) -> str:
        if not self.errors:
            return "no validation errors"
        if len(self.errors) == 1:
            return str(self.errors[0])
        lines = "\n".join(f"  - {err}" for err in self.errors)
        return f"{len(self.errors)} validation errors:\n{lines}"

    def has(self, field: str) -> bool:
        return any(err.field == field for err in self.errors)

    def get(self, field: str) -> list[ValidationError]:
        return [err for err in self.errors if err.field == field]

    def by_rule(self, rule: str) -> list[ValidationError]:
        return [err for err in self.errors if err.rule == rule]

    def to_error(self) -> CraftError | None:
        """Summarise as a VALIDATION_FAILED error, or None when empty."""
        if not self.errors:
            return None
        field_errors: dict[str, list[dict[str, Any]]] = {}
        for err in self.errors:
            info: dict[str, Any] = {"rule": err.rule, "message": err.message}
            if err.param:
                info["param"] = err.param
            info["value"] = _format_value(err.value)
            field_errors.setdefault(err.field, []).append(info)
        return VALIDATOR_ERRORS.new(VALIDATION_FAILED).with_details(
            {
                "errors": field_errors,
                "error_count": len(self.errors),
                "field_count": len(field_errors),
            }
        )


def new_validation_error(
    field: str, rule: str, param: str = "", value: Any = None, message: str = ""
) -> ValidationError:
    """Create an error, using the rule's default message when none is given."""
    if not message:
        message = error_message_for_rule(rule, param)
    return ValidationError(field, rule, param, value, message)


def set_custom_error_message(rule: str, message: str) -> None:
    """Override the default message for a rule."""
    _custom_error_messages[rule] = message


def error_message_for_rule(rule: str, param: str = "") -> str:
    if rule in _custom_error_messages:
        return _custom_error_messages[rule]
    template = _DEFAULT_MESSAGES.get(rule)
    if template is None:
        return "failed validation"
    return template.format(param=param)


def error_code_for_rule(rule: str) -> ErrorCode:
    return _RULE_CODES.get(rule, VALIDATION_FAILED)
from dataclasses import dataclass, field

import pytest

from craftable.errors import CraftError
from craftable.validation_errors import (
    INVALID_STRUCT,
    VALIDATION_FAILED,
    VALIDATOR_ERRORS,
    ValidationErrors,
)
from craftable.validator import (
    CustomValidator,
    validate,
    validate_field,
    validate_field_with_error,
    validate_with_error,
)


def tagged(spec, default="", tag="validatex"):
    return field(default=default, metadata={tag: spec})


@dataclass
class User:
    username: str = tagged("required,min=3,max=50")
    email: str = tagged("required,email")
    age: int = tagged("min=18,max=120", default=0)
    role: str = tagged("oneof=admin user guest")


@dataclass
class Address:
    city: str = tagged("required")
    country: str = ""


@dataclass
class Customer:
    name: str = tagged("required")
    address: Address = field(default_factory=Address, metadata={"validatex": "required"})


@dataclass
class Strange:
    code: str = tagged("bogus")


@dataclass
class Counter:
    count: int = tagged("even", default=0, tag="check")
    label: str = tagged("alpha", tag="check")


@dataclass
class Outer:
    counter: Counter = field(default_factory=Counter, metadata={"check": "required"})


class SelfCheck:
    def __init__(self, problem=None):
        self.problem = problem

    def validate(self):
        if self.problem:
            raise ValueError(self.problem)


def bad_user():
    return User(username="jo", email="not-an-email", age=15, role="superuser")


def good_user():
    return User(username="john", email="john@example.com", age=30, role="admin")


def test_valid_user_passes():
    assert validate(good_user()) is None
    assert validate_with_error(good_user()) is None


def test_invalid_user_reports_each_field():
    with pytest.raises(ValidationErrors) as exc_info:
        validate(bad_user())
    errors = exc_info.value
    assert {err.field for err in errors} == {"username", "email", "age", "role"}
    assert {err.field for err in errors.by_rule("min")} == {"username", "age"}
    assert errors.get("role")[0].message == "must be one of: admin user guest"
    assert errors.get("email")[0].message == "must be a valid email address"


def test_zero_values_only_fail_required():
    user = User(username="john", email="john@example.com")
    assert validate(user) is None
    with pytest.raises(ValidationErrors) as exc_info:
        validate(User())
    assert {err.rule for err in exc_info.value} == {"required"}


def test_unknown_rule_is_reported():
    with pytest.raises(ValidationErrors) as exc_info:
        validate(Strange(code="x"))
    [err] = list(exc_info.value)
    assert err.rule == "bogus"
    assert err.message == "unknown validation rule"


def test_nested_fields_use_dotted_names():
    with pytest.raises(ValidationErrors) as exc_info:
        validate(Customer(name="Ann", address=Address(country="PE")))
    assert exc_info.value.has("address.city")
    assert not exc_info.value.has("address")


def test_non_struct_raises_invalid_struct():
    with pytest.raises(CraftError) as exc_info:
        validate(42)
    assert exc_info.value.code == INVALID_STRUCT


def test_none_passes():
    assert validate(None) is None
    assert validate_with_error(None) is None


def test_validatable_is_delegated_to():
    with pytest.raises(ValueError, match="broken"):
        validate(SelfCheck("broken"))
    err = validate_with_error(SelfCheck("broken"))
    assert err.code == VALIDATION_FAILED
    assert err.message == "broken"
    assert validate_with_error(SelfCheck()) is None


def test_validatable_craft_error_is_returned_as_is():
    original = VALIDATOR_ERRORS.new(INVALID_STRUCT)

    class Failing:
        def validate(self):
            raise original

    assert validate_with_error(Failing()) is original


def test_validate_with_error_details_match_errors():
    with pytest.raises(ValidationErrors) as exc_info:
        validate(bad_user())
    err = validate_with_error(bad_user())
    assert err.code == VALIDATION_FAILED
    assert err.details["error_count"] == len(exc_info.value)
    assert err.details["field_count"] == len(err.details["errors"])
    assert sum(len(items) for items in err.details["errors"].values()) == err.details["error_count"]
    assert err.details["errors"]["role"][0]["value"] == "superuser"


def test_validate_field():
    with pytest.raises(ValidationErrors) as exc_info:
        validate_field("abc", "min=5")
    [err] = list(exc_info.value)
    assert (err.field, err.rule, err.param) == ("", "min", "5")
    assert validate_field("", "min=5") is None
    assert validate_field("x", "") is None
    with pytest.raises(ValidationErrors):
        validate_field("", "required")


def test_validate_field_with_error_names_field():
    err = validate_field_with_error("name", "ab", "min=3")
    assert err.code == VALIDATION_FAILED
    info = err.details["errors"]["name"][0]
    assert info["rule"] == "min"
    assert info["param"] == "3"
    assert info["message"] == "must be at least 3"
    assert validate_field_with_error("name", "abcd", "min=3") is None


def test_custom_validator_uses_own_tag_and_rules():
    validator = CustomValidator().with_tag_name("check").register_rule(
        "even", lambda value, param: value % 2 == 0
    )
    assert validator.tag_name == "check"
    assert validator.validate(Counter(count=4, label="abc")) is None
    with pytest.raises(ValidationErrors) as exc_info:
        validator.validate(Counter(count=3, label="abc"))
    assert [err.rule for err in exc_info.value] == ["even"]


def test_custom_validator_ignores_other_tags():
    validator = CustomValidator().register_rule("even", lambda value, param: False)
    assert validator.validate(Counter(count=3, label="1")) is None


def test_custom_rule_shadows_builtin():
    validator = CustomValidator(tag_name="check").register_rule("alpha", lambda value, param: True)
    validator.register_rule("even", lambda value, param: True)
    assert validator.validate(Counter(count=1, label="123")) is None


def test_custom_validator_nested_prefix():
    validator = CustomValidator(tag_name="check").register_rule(
        "even", lambda value, param: value % 2 == 0
    )
    with pytest.raises(ValidationErrors) as exc_info:
        validator.validate(Outer(counter=Counter(count=1, label="abc")))
    assert [err.field for err in exc_info.value] == ["counter.count"]


def test_custom_validator_rejects_non_struct():
    validator = CustomValidator()
    assert validator.validate(None) is None
    with pytest.raises(CraftError) as exc_info:
        validator.validate("text")
    assert exc_info.value.code == INVALID_STRUCT
    assert validator.validate_with_error("text").code == INVALID_STRUCT


def test_custom_validator_with_error():
    validator = CustomValidator()
    err = validator.validate_with_error(bad_user())
    assert err.code == VALIDATION_FAILED
    assert set(err.details["errors"]) == {"username", "email", "age", "role"}
    assert validator.validate_with_error(good_user()) is None
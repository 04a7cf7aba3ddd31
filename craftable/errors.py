"""Structured errors with codes, registries and the store error catalogue."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any, Mapping


class ErrorType(str, Enum):
    """Broad category of an error."""

    BAD_REQUEST = "BAD_REQUEST"
    NOT_FOUND = "NOT_FOUND"
    UNAVAILABLE = "UNAVAILABLE"
    INTERNAL = "INTERNAL"
    VALIDATION = "VALIDATION"
    AUTHORIZATION = "AUTHORIZATION"
    SYSTEM = "SYSTEM"
    EXTERNAL = "EXTERNAL"


@dataclass(frozen=True)
class ErrorCode:
    """A registered error code with its type, HTTP status and default message."""

    prefix: str
    name: str
    error_type: ErrorType
    http_status: int
    message: str

    @property
    def code(self) -> str:
        return f"{self.prefix}.{self.name}"

    def __str__(self) -> str:
        return self.code


class CraftError(Exception):
    """An exception carrying an error code, details and an optional cause."""

    def __init__(
        self,
        code: ErrorCode,
        message: str | None = None,
        details: Mapping[str, Any] | None = None,
        cause: BaseException | None = None,
    ) -> None:
        self.code = code
        self.message = message if message is not None else code.message
        self.details: dict[str, Any] = dict(details or {})
        self.cause: BaseException | None = None
        super().__init__(self.message)
        if cause is not None:
            self.with_cause(cause)

    @property
    def error_type(self) -> ErrorType:
        return self.code.error_type

    @property
    def http_status(self) -> int:
        return self.code.http_status

    def with_detail(self, key: str, value: Any) -> CraftError:
        """Attach one detail and return this error for chaining."""
        self.details[key] = value
        return self

    def with_details(self, details: Mapping[str, Any]) -> CraftError:
        """Attach several details and return this error for chaining."""
        self.details.update(details)
        return self

    def with_cause(self, cause: BaseException) -> CraftError:
        """Record the underlying cause and return this error for chaining."""
        self.cause = cause
        self.__cause__ = cause
        return self

    def to_dict(self) -> dict[str, Any]:
        result: dict[str, Any] = {
            "code": self.code.code,
            "type": self.error_type.value,
            "message": self.message,
        }
        if self.details:
            result["details"] = dict(self.details)
        if self.cause is not None:
            result["cause"] = str(self.cause)
        return result

    def __str__(self) -> str:
        text = f"[{self.code.code}] {self.message}"
        if self.cause is not None:
            text += f": {self.cause}"
        return text


class ErrorRegistry:
    """A named collection of error codes sharing a prefix."""

    def __init__(self, prefix: str) -> None:
        self.prefix = prefix
        self._codes: dict[str, ErrorCode] = {}

    def register(
        self, name: str, error_type: ErrorType, http_status: int, message: str
    ) -> ErrorCode:
        """Register a new code; names must be unique within the registry."""
        if name in self._codes:
            raise ValueError(f"error code {self.prefix}.{name} is already registered")
        code = ErrorCode(self.prefix, name, error_type, http_status, message)
        self._codes[name] = code
        return code

    def __contains__(self, code: object) -> bool:
        return isinstance(code, ErrorCode) and self._codes.get(code.name) == code

    def _check(self, code: ErrorCode) -> None:
        if code not in self:
            raise ValueError(f"error code {code} is not registered in {self.prefix}")

    def new(self, code: ErrorCode) -> CraftError:
        self._check(code)
        return CraftError(code)

    def new_with_message(self, code: ErrorCode, message: str) -> CraftError:
        self._check(code)
        return CraftError(code, message=message)

    def new_with_cause(self, code: ErrorCode, cause: BaseException) -> CraftError:
        self._check(code)
        return CraftError(code, cause=cause)


def is_code(err: BaseException | None, code: ErrorCode) -> bool:
    """Return whether err, or any error in its cause chain, carries code."""
    seen: set[int] = set()
    while err is not None and id(err) not in seen:
        seen.add(id(err))
        if isinstance(err, CraftError) and err.code == code:
            return True
        err = err.__cause__
    return False


STORE_ERRORS = ErrorRegistry("STORE")

INVALID_QUERY = STORE_ERRORS.register("INVALID_QUERY", ErrorType.BAD_REQUEST, 400, "Invalid query")
RECORD_NOT_FOUND = STORE_ERRORS.register("NOT_FOUND", ErrorType.NOT_FOUND, 404, "Record not found")
CONNECTION_FAILED = STORE_ERRORS.register(
    "CONNECTION_FAILED", ErrorType.UNAVAILABLE, 503, "Database connection failed"
)
CREATE_FAILED = STORE_ERRORS.register("CREATE_FAILED", ErrorType.INTERNAL, 500, "Failed to create record")
UPDATE_FAILED = STORE_ERRORS.register("UPDATE_FAILED", ErrorType.INTERNAL, 500, "Failed to update record")
DELETE_FAILED = STORE_ERRORS.register("DELETE_FAILED", ErrorType.INTERNAL, 500, "Failed to delete record")
TX_BEGIN_FAILED = STORE_ERRORS.register(
    "TX_BEGIN_FAILED", ErrorType.INTERNAL, 500, "Failed to begin transaction"
)
TX_COMMIT_FAILED = STORE_ERRORS.register(
    "TX_COMMIT_FAILED", ErrorType.INTERNAL, 500, "Failed to commit transaction"
)
TX_ROLLBACK_FAILED = STORE_ERRORS.register(
    "TX_ROLLBACK_FAILED", ErrorType.INTERNAL, 500, "Failed to rollback transaction"
)
BULK_OP_FAILED = STORE_ERRORS.register(
    "BULK_OPERATION_FAILED", ErrorType.INTERNAL, 500, "Bulk operation failed"
)
SEARCH_FAILED = STORE_ERRORS.register("SEARCH_FAILED", ErrorType.INTERNAL, 500, "Search operation failed")

SQL_SCAN_FAILED = STORE_ERRORS.register(
    "SQL_SCAN_FAILED", ErrorType.INTERNAL, 500, "Failed to scan SQL results"
)
SQL_QUERY_FAILED = STORE_ERRORS.register(
    "SQL_QUERY_FAILED", ErrorType.INTERNAL, 500, "SQL query execution failed"
)
SQL_COUNT_FAILED = STORE_ERRORS.register(
    "SQL_COUNT_FAILED", ErrorType.INTERNAL, 500, "Failed to count SQL records"
)
SQL_EXEC_FAILED = STORE_ERRORS.register(
    "SQL_EXEC_FAILED", ErrorType.INTERNAL, 500, "SQL exec operation failed"
)

MONGO_FIND_FAILED = STORE_ERRORS.register(
    "MONGO_FIND_FAILED", ErrorType.INTERNAL, 500, "MongoDB find operation failed"
)
MONGO_COUNT_FAILED = STORE_ERRORS.register(
    "MONGO_COUNT_FAILED", ErrorType.INTERNAL, 500, "Failed to count MongoDB records"
)
MONGO_DECODE_FAILED = STORE_ERRORS.register(
    "MONGO_DECODE_FAILED", ErrorType.INTERNAL, 500, "Failed to decode MongoDB document"
)
MONGO_INSERT_FAILED = STORE_ERRORS.register(
    "MONGO_INSERT_FAILED", ErrorType.INTERNAL, 500, "MongoDB insert operation failed"
)
MONGO_UPDATE_FAILED = STORE_ERRORS.register(
    "MONGO_UPDATE_FAILED", ErrorType.INTERNAL, 500, "MongoDB update operation failed"
)
MONGO_DELETE_FAILED = STORE_ERRORS.register(
    "MONGO_DELETE_FAILED", ErrorType.INTERNAL, 500, "MongoDB delete operation failed"
)
INVALID_ID = STORE_ERRORS.register("INVALID_ID", ErrorType.BAD_REQUEST, 400, "Invalid ID format")


def is_record_not_found(err: BaseException | None) -> bool:
    return is_code(err, RECORD_NOT_FOUND)


def is_connection_failed(err: BaseException | None) -> bool:
    return is_code(err, CONNECTION_FAILED)


def is_invalid_query(err: BaseException | None) -> bool:
    return is_code(err, INVALID_QUERY)


def is_invalid_id(err: BaseException | None) -> bool:
    return is_code(err, INVALID_ID)
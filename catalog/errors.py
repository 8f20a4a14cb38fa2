"""Error taxonomy for the ingestion core.

Every failure that leaves the core is a ``CatalogError`` subclass carrying an
``ErrorKind``. Job runners only record free-text messages, so
``classify_error`` maps both exceptions and those messages back onto the same
closed set of kinds.
"""

from enum import Enum
from typing import Any

from sqlalchemy.exc import IntegrityError, OperationalError


class ErrorKind(str, Enum):
    """Closed set of failure categories."""

    invalid_city_name = "invalid_city_name"
    missing_required_field = "missing_required_field"
    lock_timeout = "lock_timeout"
    constraint_race = "constraint_race"
    persistence_error = "persistence_error"
    unknown_error = "unknown_error"

    @property
    def retryable(self) -> bool:
        return self in (ErrorKind.lock_timeout, ErrorKind.constraint_race)


class CatalogError(Exception):
    """Base class for all errors raised by the catalog core."""

    kind: ErrorKind = ErrorKind.unknown_error

    def __init__(self, message: str, **context: Any):
        super().__init__(message)
        self.message = message
        self.context = context

    @property
    def retryable(self) -> bool:
        return self.kind.retryable

    def to_dict(self) -> dict[str, Any]:
        return {
            "kind": self.kind.value,
            "message": self.message,
            "retryable": self.retryable,
            **self.context,
        }


class InvalidCityNameError(CatalogError):
    """A city name was rejected by the validator.

    ``layer`` tells which guard rejected it: ``"model"`` for the persistence
    hook on City, ``"resolver"`` for the check inside location resolution.
    """

    kind = ErrorKind.invalid_city_name

    def __init__(
        self,
        name: str | None,
        country_code: str | None,
        reason: str,
        layer: str = "resolver",
    ):
        reason = getattr(reason, "value", reason)
        super().__init__(
            f"Failed to find or create city: {reason}",
            name=name,
            country_code=country_code,
            reason=reason,
            layer=layer,
        )
        self.name = name
        self.country_code = country_code
        self.reason = reason
        self.layer = layer


class MissingRequiredFieldError(CatalogError):
    kind = ErrorKind.missing_required_field

    def __init__(self, field: str, **context: Any):
        super().__init__(f"Missing required field: {field}", field=field, **context)
        self.field = field


class LockTimeoutError(CatalogError):
    """The fingerprint lock could not be acquired in time. Safe to retry later."""

    kind = ErrorKind.lock_timeout

    def __init__(self, key: int, timeout: float):
        super().__init__(
            f"Lock timeout after {timeout:.1f}s waiting for key {key}",
            lock_key=key,
            timeout=timeout,
        )
        self.key = key
        self.timeout = timeout


class ConstraintRaceError(CatalogError):
    """A uniqueness constraint fired because a concurrent writer won a race."""

    kind = ErrorKind.constraint_race

    def __init__(self, entity: str, detail: str = ""):
        super().__init__(f"Unique constraint race on {entity}: {detail}".rstrip(": "), entity=entity)
        self.entity = entity


class PersistenceError(CatalogError):
    """A constraint race that persisted after the internal retry."""

    kind = ErrorKind.persistence_error

    def __init__(self, entity: str, detail: str = ""):
        super().__init__(f"Persistence error on {entity}: {detail}".rstrip(": "), entity=entity)
        self.entity = entity


# Ordered: first matching fragment wins.
_MESSAGE_PATTERNS: list[tuple[str, ErrorKind]] = [
    ("failed to find or create city", ErrorKind.invalid_city_name),
    ("invalid city name", ErrorKind.invalid_city_name),
    ("missing required field", ErrorKind.missing_required_field),
    ("is required", ErrorKind.missing_required_field),
    ("lock timeout", ErrorKind.lock_timeout),
    ("could not obtain lock", ErrorKind.lock_timeout),
    ("database is locked", ErrorKind.lock_timeout),
    ("persistence error", ErrorKind.persistence_error),
    ("unique constraint", ErrorKind.constraint_race),
    ("duplicate key", ErrorKind.constraint_race),
    ("integrityerror", ErrorKind.constraint_race),
]


def classify_error(error: BaseException | str | None) -> ErrorKind:
    """Map an exception or a recorded failure message to an ``ErrorKind``."""
    if error is None:
        return ErrorKind.unknown_error
    if isinstance(error, CatalogError):
        return error.kind
    if isinstance(error, IntegrityError):
        return ErrorKind.constraint_race
    if isinstance(error, OperationalError) and "locked" in str(error).lower():
        return ErrorKind.lock_timeout

    text = str(error).strip().lower()
    try:
        return ErrorKind(text)
    except ValueError:
        pass
    for fragment, kind in _MESSAGE_PATTERNS:
        if fragment in text:
            return kind
    return ErrorKind.unknown_error

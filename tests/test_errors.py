"""Tests for the error taxonomy."""

import pytest
from sqlalchemy.exc import IntegrityError, OperationalError

from catalog.errors import (
    ConstraintRaceError,
    ErrorKind,
    InvalidCityNameError,
    LockTimeoutError,
    MissingRequiredFieldError,
    PersistenceError,
    classify_error,
)
from catalog.services.city_names import CityNameRejection


@pytest.mark.parametrize(
    "error,kind",
    [
        (InvalidCityNameError("SW18 2SS", "GB", CityNameRejection.postcode), ErrorKind.invalid_city_name),
        (MissingRequiredFieldError("title"), ErrorKind.missing_required_field),
        (LockTimeoutError(1, 30.0), ErrorKind.lock_timeout),
        (ConstraintRaceError("city"), ErrorKind.constraint_race),
        (PersistenceError("event"), ErrorKind.persistence_error),
        (IntegrityError("INSERT", {}, Exception("UNIQUE constraint failed")), ErrorKind.constraint_race),
        (OperationalError("BEGIN", {}, Exception("database is locked")), ErrorKind.lock_timeout),
        (ValueError("something else"), ErrorKind.unknown_error),
        (None, ErrorKind.unknown_error),
    ],
)
def test_classify_exceptions(error, kind):
    assert classify_error(error) is kind


@pytest.mark.parametrize(
    "message,kind",
    [
        ("Failed to find or create city: postcode", ErrorKind.invalid_city_name),
        ("Venue name is required", ErrorKind.missing_required_field),
        ("Missing required field: venue_data.name", ErrorKind.missing_required_field),
        ("Lock timeout after 30.0s waiting for key 12", ErrorKind.lock_timeout),
        ("(sqlite3.OperationalError) database is locked", ErrorKind.lock_timeout),
        ('duplicate key value violates unique constraint "event_fingerprint_key"', ErrorKind.constraint_race),
        ("Persistence error on event: UNIQUE constraint failed", ErrorKind.persistence_error),
        ("lock_timeout", ErrorKind.lock_timeout),
        ("  INVALID_CITY_NAME ", ErrorKind.invalid_city_name),
        ("KeyError: 'foo'", ErrorKind.unknown_error),
        ("", ErrorKind.unknown_error),
    ],
)
def test_classify_messages(message, kind):
    assert classify_error(message) is kind


def test_retryable_kinds():
    assert {k for k in ErrorKind if k.retryable} == {ErrorKind.lock_timeout, ErrorKind.constraint_race}


def test_to_dict_carries_context():
    error = InvalidCityNameError("425 Burwood Hwy", "AU", CityNameRejection.street_address, layer="model")
    assert error.to_dict() == {
        "kind": "invalid_city_name",
        "message": "Failed to find or create city: street_address",
        "retryable": False,
        "name": "425 Burwood Hwy",
        "country_code": "AU",
        "reason": "street_address",
        "layer": "model",
    }


def test_missing_field_message():
    error = MissingRequiredFieldError("country", value="Atlantis")
    assert str(error) == "Missing required field: country"
    assert error.context == {"field": "country", "value": "Atlantis"}

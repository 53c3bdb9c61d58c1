from django.http import Http404
from rest_framework import exceptions as drf_exceptions

from core.exceptions import Conflict, ConfigurationError, UpstreamError, ValidationError, envelope_exception_handler


def test_service_error_renders_envelope():
    response = envelope_exception_handler(Conflict(), {})

    assert response.status_code == 409
    assert response.data == {
        "success": False,
        "error": "conflict",
        "message": "The space is not available for the selected period.",
    }


def test_field_errors_are_listed():
    response = envelope_exception_handler(ValidationError("Too many people.", field="people_count"), {})

    assert response.status_code == 400
    assert response.data["errors"] == {"people_count": ["Too many people."]}


def test_drf_validation_error_keeps_field_detail():
    response = envelope_exception_handler(drf_exceptions.ValidationError({"start_date": ["Required."]}), {})

    assert response.status_code == 400
    assert response.data["message"] == "Invalid data."
    assert response.data["error"] == "validation_error"
    assert response.data["errors"] == {"start_date": ["Required."]}


def test_django_404_maps_to_not_found():
    response = envelope_exception_handler(Http404("missing"), {})

    assert response.status_code == 404
    assert response.data["error"] == "not_found"


def test_upstream_and_configuration_errors_are_server_side(caplog):
    upstream = envelope_exception_handler(UpstreamError(), {})
    configuration = envelope_exception_handler(ConfigurationError(), {})

    assert upstream.status_code == 502
    assert configuration.status_code == 500
    assert "request failed" in caplog.text


def test_unhandled_exceptions_are_left_to_django():
    assert envelope_exception_handler(RuntimeError("boom"), {}) is None

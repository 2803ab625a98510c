"""Tests for the engine error taxonomy."""

import pytest

from app.core.errors import (
    GENERIC_MESSAGE,
    DuplicateJobError,
    EngineError,
    ErrorCode,
    InvalidStateError,
    ModuleDisabledError,
    NotFoundError,
    ValidationFailedError,
)


class TestStatusCodes:
    @pytest.mark.parametrize(
        "error,status",
        [
            (DuplicateJobError("j1", "abc"), 409),
            (ValidationFailedError("bad"), 400),
            (NotFoundError("Job", "j1"), 404),
            (InvalidStateError("Job", "j1", "succeeded", "cancel"), 409),
            (ModuleDisabledError(), 503),
            (EngineError("boom"), 500),
        ],
    )
    def test_mapping(self, error, status):
        assert error.status_code == status


class TestPublicMessages:
    def test_not_found_hides_identifier(self):
        error = NotFoundError("DistributionRecord", "abc-123")

        assert "abc-123" in error.message
        assert error.public_message() == "Resource not found"

    def test_validation_message_is_passed_through(self):
        error = ValidationFailedError("limit must be <= 100")
        assert error.public_message() == "limit must be <= 100"

    def test_invalid_state_message_is_passed_through(self):
        error = InvalidStateError("Job", "j1", "running", "retry")
        assert error.public_message() == "Cannot retry Job j1 in status running"

    def test_unlisted_code_gets_generic_text(self):
        assert EngineError("db exploded at 10.0.0.3").public_message() == GENERIC_MESSAGE


class TestToDict:
    def test_duplicate_carries_existing_id(self):
        data = DuplicateJobError("j1", "abc").to_dict()

        assert data == {
            "code": "DUPLICATE_JOB",
            "message": "An identical job is already in progress",
            "retryable": False,
            "existing_job_id": "j1",
        }

    def test_validation_errors_included_when_given(self):
        assert "errors" not in ValidationFailedError("bad").to_dict()

        data = ValidationFailedError("bad", errors=[{"loc": "payload.postId"}]).to_dict()
        assert data["errors"] == [{"loc": "payload.postId"}]

    def test_module_disabled_is_retryable(self):
        data = ModuleDisabledError().to_dict()

        assert data["code"] == ErrorCode.MODULE_DISABLED.value
        assert data["retryable"] is True
        assert data["module"] == "distribution"

    def test_retryable_override(self):
        assert EngineError("x", retryable=True).retryable is True
        assert EngineError("x").retryable is False

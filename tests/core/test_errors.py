"""Tests for error types and codes."""

import pytest

from memoplane.core.errors import (
    ConfigError,
    ErrorCode,
    InternalError,
    InvariantViolation,
    MemoplaneError,
    SerializationError,
    StoreError,
)


class TestErrorCode:
    """Error code value tests."""

    @pytest.mark.parametrize(
        ("code", "expected_range"),
        [
            (ErrorCode.CONFIG_PARSE_ERROR, 2000),
            (ErrorCode.CONFIG_INVALID_VALUE, 2000),
            (ErrorCode.STORE_UNAVAILABLE, 3000),
            (ErrorCode.STORE_CORRUPT, 3000),
            (ErrorCode.SERIALIZATION_ENCODE_FAILED, 4000),
            (ErrorCode.SERIALIZATION_DECODE_FAILED, 4000),
            (ErrorCode.INTERNAL_ERROR, 9000),
            (ErrorCode.INVARIANT_VIOLATION, 9000),
        ],
    )
    def test_given_error_code_when_checked_then_in_correct_range(
        self, code: ErrorCode, expected_range: int
    ) -> None:
        """Error codes fall within their designated numeric range."""
        assert expected_range <= code.value < expected_range + 1000


class TestMemoplaneError:
    """Base error behavior tests."""

    def test_given_error_when_to_dict_then_serializes_all_fields(self) -> None:
        """Error serializes to dict with all required fields."""
        # Given
        error = MemoplaneError(
            code=ErrorCode.CONFIG_PARSE_ERROR,
            message="Test message",
            retryable=True,
            details={"key": "value"},
        )

        # When
        result = error.to_dict()

        # Then
        assert result == {
            "code": 2001,
            "error": "CONFIG_PARSE_ERROR",
            "message": "Test message",
            "retryable": True,
            "details": {"key": "value"},
        }

    def test_given_error_when_str_then_human_readable(self) -> None:
        """Error string representation is human readable."""
        error = MemoplaneError(code=ErrorCode.INTERNAL_ERROR, message="Something broke")
        assert str(error) == "[9001] INTERNAL_ERROR: Something broke"

    def test_given_error_when_raised_then_catchable_as_exception(self) -> None:
        """Errors are ordinary exceptions."""
        with pytest.raises(MemoplaneError):
            raise StoreError.corrupt("/tmp/cache.db", "bad page")


class TestConfigError:
    """ConfigError factory method tests."""

    def test_parse_error_carries_path(self) -> None:
        error = ConfigError.parse_error("/a/config.yaml", "unexpected token")
        assert error.code == ErrorCode.CONFIG_PARSE_ERROR
        assert error.details["path"] == "/a/config.yaml"
        assert "unexpected token" in error.message

    def test_invalid_value_stringifies_value(self) -> None:
        error = ConfigError.invalid_value("cache.flush_threshold", 0, "must be >= 1")
        assert error.code == ErrorCode.CONFIG_INVALID_VALUE
        assert error.details == {"field": "cache.flush_threshold", "value": "0", "reason": "must be >= 1"}

    def test_missing_required_and_file_not_found(self) -> None:
        assert ConfigError.missing_required("cache").code == ErrorCode.CONFIG_MISSING_REQUIRED
        assert ConfigError.file_not_found("/x").code == ErrorCode.CONFIG_FILE_NOT_FOUND


class TestStoreError:
    """StoreError factory method tests."""

    def test_unavailable_and_write_failed_are_retryable(self) -> None:
        """Locked or unreachable stores may work on a later run."""
        assert StoreError.unavailable("/c.db", "permission denied").retryable is True
        assert StoreError.write_failed("/c.db", "disk full").retryable is True

    def test_corrupt_is_not_retryable(self) -> None:
        error = StoreError.corrupt("/c.db", "malformed")
        assert error.retryable is False
        assert error.code == ErrorCode.STORE_CORRUPT


class TestSerializationError:
    """SerializationError factory method tests."""

    def test_encode_failed_names_type(self) -> None:
        error = SerializationError.encode_failed("socket.socket", "cannot pickle")
        assert error.code == ErrorCode.SERIALIZATION_ENCODE_FAILED
        assert error.details["type"] == "socket.socket"

    def test_decode_failed(self) -> None:
        error = SerializationError.decode_failed("truncated")
        assert error.code == ErrorCode.SERIALIZATION_DECODE_FAILED

    def test_unsupported_kind(self) -> None:
        error = SerializationError.unsupported_kind("builtins.function", "never")
        assert error.code == ErrorCode.SERIALIZATION_UNSUPPORTED_KIND
        assert "never" in error.message


class TestInternalErrors:
    """InternalError and InvariantViolation tests."""

    def test_unexpected_keeps_details(self) -> None:
        error = InternalError.unexpected("boom", where="exit_frame")
        assert error.code == ErrorCode.INTERNAL_ERROR
        assert error.details == {"where": "exit_frame"}

    def test_invariant_violation_message(self) -> None:
        error = InvariantViolation.broken("frames must nest", depth=3)
        assert error.code == ErrorCode.INVARIANT_VIOLATION
        assert error.message == "Invariant violated: frames must nest"
        assert error.details == {"depth": 3}

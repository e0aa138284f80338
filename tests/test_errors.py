"""Tests for Mianix error classes.

This module tests the exception hierarchy and error formatting.
"""

import pytest

from mianix.errors import (
    AuthError,
    ConfigurationError,
    MianixError,
    NetworkError,
    NotFoundError,
    PartialDataWarning,
    ProtocolError,
    ProviderError,
    StorageError,
    StreamCancelledError,
    error_for_status,
)


class TestMianixErrorHierarchy:
    """Tests for exception inheritance."""

    def test_all_errors_inherit_from_mianix_error(self):
        """All custom exceptions should inherit from MianixError."""
        for error_type in (
            ConfigurationError,
            ProviderError,
            AuthError,
            NotFoundError,
            NetworkError,
            ProtocolError,
            StreamCancelledError,
            StorageError,
        ):
            assert issubclass(error_type, MianixError)

    def test_status_errors_are_provider_errors(self):
        assert issubclass(AuthError, ProviderError)
        assert issubclass(NotFoundError, ProviderError)

    def test_partial_data_is_a_warning(self):
        assert issubclass(PartialDataWarning, Warning)
        assert not issubclass(PartialDataWarning, MianixError)


class TestErrorForStatus:
    @pytest.mark.parametrize(
        "status,error_type",
        [(401, AuthError), (403, AuthError), (404, NotFoundError), (429, ProviderError), (500, ProviderError)],
    )
    def test_maps_status(self, status, error_type):
        error = error_for_status(status, "body", "p1")
        assert type(error) is error_type
        assert error.status_code == status
        assert error.provider_id == "p1"

    def test_str_includes_status_provider_and_body(self):
        error = error_for_status(500, "upstream exploded", "p1")
        text = str(error)
        assert "status=500" in text
        assert "provider=p1" in text
        assert "upstream exploded" in text

    def test_long_body_truncated_in_str(self):
        error = ProviderError("LLM API error", 500, "x" * 2000)
        assert len(str(error)) < 600
        assert len(error.body) == 2000


class TestOtherErrors:
    def test_network_error_keeps_cause(self):
        cause = OSError("refused")
        error = NetworkError("Connection failed", original_error=cause)
        assert error.original_error is cause

    def test_storage_error_str(self):
        assert str(StorageError("Failed to read file", path="a/b.json")) == (
            "Failed to read file: path=a/b.json"
        )
        assert str(StorageError("Failed")) == "Failed"

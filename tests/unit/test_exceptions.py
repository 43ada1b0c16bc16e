"""Unit tests for custom exception classes."""

import pytest

from forge_deployments.exceptions import (
    BroadcastParseError,
    DeploymentError,
    DeploymentNotFoundError,
    DuplicateDeploymentError,
    DuplicateEntryError,
    NetworkNotFoundError,
    RegistryLoadError,
    RegistryWriteError,
    RpcError,
    SafeTransactionNotFoundError,
    TagAlreadyExistsError,
    TagNotFoundError,
    TransactionNotFoundError,
)


class TestExceptionCatching:
    """Test that exceptions can be caught as their base types."""

    def test_catch_broadcast_parse_error_as_value_error(self):
        """Test that BroadcastParseError can be caught as ValueError."""
        with pytest.raises(ValueError):
            raise BroadcastParseError("test")

    def test_catch_registry_write_error_as_os_error(self):
        """Test that RegistryWriteError can be caught as OSError."""
        with pytest.raises(OSError):
            raise RegistryWriteError("test")

    def test_catch_not_found_errors_as_key_error(self):
        """Test that lookup failures can be caught as KeyError."""
        for exc in (
            DeploymentNotFoundError("test"),
            TransactionNotFoundError("test"),
            SafeTransactionNotFoundError("test"),
        ):
            with pytest.raises(KeyError):
                raise exc

    def test_catch_duplicate_deployment_as_duplicate_entry(self):
        """Test that DuplicateDeploymentError is a DuplicateEntryError."""
        with pytest.raises(DuplicateEntryError):
            raise DuplicateDeploymentError("test")

    def test_catch_rpc_error_as_runtime_error(self):
        """Test that RpcError can be caught as RuntimeError."""
        with pytest.raises(RuntimeError):
            raise RpcError("test")

    def test_catch_all_as_deployment_error(self):
        """Test that all custom exceptions can be caught as DeploymentError."""
        exceptions = [
            BroadcastParseError("test"),
            RegistryLoadError("test"),
            RegistryWriteError("test"),
            DeploymentNotFoundError("test"),
            TransactionNotFoundError("test"),
            SafeTransactionNotFoundError("test"),
            DuplicateEntryError("test"),
            DuplicateDeploymentError("test"),
            TagAlreadyExistsError("test"),
            TagNotFoundError("test"),
            NetworkNotFoundError("test"),
            RpcError("test"),
        ]

        for exc in exceptions:
            with pytest.raises(DeploymentError):
                raise exc


class TestExceptionMessages:
    """Test that exception messages are preserved."""

    def test_message_preserved(self):
        """Test that the message is available via str()."""
        error = RegistryLoadError("Invalid JSON in deployments.json")
        assert "Invalid JSON" in str(error)

    def test_chained_cause_preserved(self):
        """Test that raise ... from keeps the original cause."""
        with pytest.raises(RegistryWriteError) as exc_info:
            try:
                raise PermissionError("read-only")
            except OSError as e:
                raise RegistryWriteError("Failed to write registry") from e

        assert isinstance(exc_info.value.__cause__, PermissionError)

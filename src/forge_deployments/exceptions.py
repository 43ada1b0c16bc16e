"""Custom exception classes for forge-deployments library."""


class DeploymentError(Exception):
    """Base exception for deployment-related errors."""

    pass


class BroadcastParseError(DeploymentError, ValueError):
    """Raised when a broadcast file cannot be read or is not valid JSON."""

    pass


class RegistryLoadError(DeploymentError, ValueError):
    """Raised when a persisted registry document is corrupt."""

    pass


class RegistryWriteError(DeploymentError, OSError):
    """Raised when the registry could not be flushed to disk.

    The on-disk documents are unchanged when this is raised.
    """

    pass


class DeploymentNotFoundError(DeploymentError, KeyError):
    """Raised when requested deployment is not in the registry."""

    pass


class TransactionNotFoundError(DeploymentError, KeyError):
    """Raised when requested transaction is not in the registry."""

    pass


class SafeTransactionNotFoundError(DeploymentError, KeyError):
    """Raised when requested Safe transaction is not in the registry."""

    pass


class DuplicateEntryError(DeploymentError, ValueError):
    """Raised when a changeset creates an entry whose key is already registered."""

    pass


class DuplicateDeploymentError(DuplicateEntryError):
    """Raised when a created deployment reuses an ID or an address on the same chain."""

    pass


class TagAlreadyExistsError(DeploymentError, ValueError):
    """Raised when a deployment already carries the requested tag."""

    pass


class TagNotFoundError(DeploymentError, ValueError):
    """Raised when removing a tag the deployment does not carry."""

    pass


class NetworkNotFoundError(DeploymentError, ValueError):
    """Raised when requested network is not configured."""

    pass


class RpcError(DeploymentError, RuntimeError):
    """Raised when a JSON-RPC request fails at the transport or protocol level."""

    pass

"""Custom exception hierarchy for the multisite tenant mover."""


class MoverError(Exception):
    """Base exception for all tenant-move errors."""


class ConfigError(MoverError):
    """Raised when configuration is invalid or missing."""


class InvalidEnvironmentError(MoverError):
    """Raised when an environment reference is not in ``site.env`` form."""


class InvalidTenantError(MoverError):
    """Raised when a tenant id cannot be used as a table fragment or path segment."""


class PreconditionError(MoverError):
    """Raised when a tenant cannot be moved (no tables, no routing row)."""


class QueryError(MoverError):
    """Raised when a database statement fails against an environment."""


class CoordinationError(MoverError):
    """Raised when the ID coordination ledger cannot be read or written."""


class TransportError(MoverError):
    """Raised when an external tool (mysqldump, mysql, rsync, terminus) exits non-zero."""

    def __init__(self, tool: str, returncode: int, stderr: str = "") -> None:
        self.tool = tool
        self.returncode = returncode
        self.stderr = stderr
        super().__init__(f"{tool} exited with status {returncode}")


class OperationCancelledError(MoverError):
    """Raised when an operation is cancelled before its process finished."""


class OperationTimeoutError(OperationCancelledError):
    """Raised when an operation's deadline passes before its process finished."""

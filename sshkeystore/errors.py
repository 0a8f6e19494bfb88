"""Error types raised by the key store."""

from pathlib import Path


class SSHKeyStoreError(Exception):
    """Base class for all sshkeystore errors."""


class InvalidRequestError(SSHKeyStoreError):
    """A key request is missing a required field or has an invalid one."""


class PathConflictError(SSHKeyStoreError):
    """A non-directory entry occupies the key directory path."""

    def __init__(self, path: Path):
        self.path = path
        super().__init__(f"{path} exists but is not a directory")


class KeyGenerationError(SSHKeyStoreError):
    """The external key generation mechanism failed."""

    def __init__(self, message: str, cmdline: str | None = None, output: str = ""):
        self.cmdline = cmdline
        self.output = output
        super().__init__(message)


class TrustRegistrationError(SSHKeyStoreError):
    """A known_hosts or authorized_keys ledger could not be updated.

    The keypair that was being registered is left in place.
    """

    def __init__(
        self,
        message: str,
        path: Path,
        cmdline: str | None = None,
        output: str = "",
    ):
        self.path = path
        self.cmdline = cmdline
        self.output = output
        super().__init__(message)


class KeyReadError(SSHKeyStoreError):
    """A key file or ledger could not be read."""

    def __init__(self, path: Path, cause: OSError):
        self.path = path
        self.cause = cause
        super().__init__(f"unable to read {path}: {cause.strerror or cause}")


class KeyRequestError(SSHKeyStoreError):
    """Wraps any failure that occurred while fulfilling a request."""

    def __init__(self, request_kind: str, name: str | None, cause: Exception):
        self.request_kind = request_kind
        self.name = name
        self.cause = cause
        key = f" for key '{name}'" if name else ""
        super().__init__(f"unable to fulfil request '{request_kind}'{key}: {cause}")

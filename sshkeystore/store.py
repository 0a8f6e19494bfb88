"""Filesystem storage of SSH keypairs."""

import logging
from pathlib import Path

from .errors import KeyReadError, PathConflictError
from .request import AUTHORIZED_KEYS, KNOWN_HOSTS

logger = logging.getLogger(__name__)


class KeyStore:
    """One keypair per key name, stored under a single directory.

    The private key lives at ``<path>/<name>`` and the public key next to
    it at ``<path>/<name>.pub``.
    """

    def __init__(self, path: Path):
        self.path = path

    def private_path(self, name: str) -> Path:
        return self.path / name

    def public_path(self, name: str) -> Path:
        return self.path / f"{name}.pub"

    def exists(self, name: str) -> bool:
        """Check whether a keypair exists.

        Only the private key is checked; its public half is assumed to be
        there too.
        """
        return self.private_path(name).exists()

    def read_public(self, name: str) -> bytes:
        return self._read(self.public_path(name))

    def read_private(self, name: str) -> bytes:
        return self._read(self.private_path(name))

    def ensure_directory(self) -> None:
        """Create the key directory (and parents) if it is missing.

        Raises:
            PathConflictError: If something other than a directory is in the way
        """
        if self.path.exists() and not self.path.is_dir():
            raise PathConflictError(self.path)
        if not self.path.is_dir():
            logger.debug("creating directory %s", self.path)
            try:
                self.path.mkdir(parents=True, exist_ok=True)
            except (FileExistsError, NotADirectoryError) as e:
                # A parent is a regular file
                raise PathConflictError(self.path) from e

    def list_keys(self) -> list[str]:
        """List the names of all stored keypairs."""
        if not self.path.is_dir():
            return []
        return sorted(
            p.name for p in self.path.iterdir()
            if p.is_file()
            and p.suffix != ".pub"
            and p.name not in (KNOWN_HOSTS, AUTHORIZED_KEYS)
            and self.public_path(p.name).exists()
        )

    @staticmethod
    def _read(path: Path) -> bytes:
        try:
            return path.read_bytes()
        except OSError as e:
            raise KeyReadError(path, e) from e

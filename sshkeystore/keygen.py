"""Generate keypairs exactly once."""

import logging
import os
import shutil
import tempfile
from dataclasses import dataclass
from pathlib import Path
from typing import Protocol

from .errors import KeyGenerationError
from .ssh import CommandResult
from .store import KeyStore

logger = logging.getLogger(__name__)

DEFAULT_PRIVATE_KEY_MODE = 0o400


class KeyGenerationMechanism(Protocol):
    def generate(
        self,
        path: Path,
        key_type: str,
        comment: str,
        bits: int | None = None,
    ) -> CommandResult:
        """Write an unencrypted keypair to ``path`` and ``path.pub``."""
        ...


@dataclass
class KeyPairStatus:
    """Result of ensuring a keypair exists."""
    created: bool
    private_path: Path
    public_path: Path


class KeyGenerator:
    """Creates a keypair on first use and never touches it again."""

    def __init__(
        self,
        mechanism: KeyGenerationMechanism,
        private_key_mode: int = DEFAULT_PRIVATE_KEY_MODE,
    ):
        self.mechanism = mechanism
        self.private_key_mode = private_key_mode

    def ensure_keypair(
        self,
        directory: Path,
        name: str,
        comment: str | None,
        key_type: str,
        bits: int | None = None,
    ) -> KeyPairStatus:
        """Generate the keypair ``name`` in ``directory`` unless it exists.

        Existing keys are neither regenerated nor validated.

        The pair is generated in a scratch directory next to its final
        location and renamed into place, public half first, so a visible
        private key always has its public key beside it. Two processes
        racing on the same missing key can still both generate; the last
        rename wins.

        Raises:
            KeyGenerationError: If the mechanism fails or produces no keys
        """
        store = KeyStore(directory)
        private_path = store.private_path(name)
        public_path = store.public_path(name)

        if store.exists(name):
            logger.debug("key %s already exists, reusing it", private_path)
            return KeyPairStatus(False, private_path, public_path)

        logger.debug("generating %s key %s", key_type, private_path)
        try:
            scratch = Path(tempfile.mkdtemp(prefix=f".{name}.", dir=directory))
        except OSError as e:
            raise KeyGenerationError(f"unable to create scratch directory in {directory}: {e}") from e

        try:
            tmp_private = scratch / name
            tmp_public = scratch / f"{name}.pub"

            result = self.mechanism.generate(tmp_private, key_type, comment or "", bits)
            if not result.ok:
                raise KeyGenerationError(
                    f"calling '{result.cmdline}' resulted in error: {result.output.strip()}",
                    cmdline=result.cmdline,
                    output=result.output,
                )

            if not tmp_private.is_file() or not tmp_public.is_file():
                raise KeyGenerationError(
                    f"calling '{result.cmdline}' did not produce a keypair",
                    cmdline=result.cmdline,
                    output=result.output,
                )

            try:
                tmp_private.chmod(self.private_key_mode)
                os.replace(tmp_public, public_path)
                os.replace(tmp_private, private_path)
            except OSError as e:
                raise KeyGenerationError(f"unable to install key {private_path}: {e}") from e
        finally:
            shutil.rmtree(scratch, ignore_errors=True)

        logger.debug("created key %s", private_path)
        return KeyPairStatus(True, private_path, public_path)

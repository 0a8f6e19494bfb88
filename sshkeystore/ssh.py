"""ssh-keygen backed key generation and known_hosts maintenance."""

import logging
import shlex
import subprocess
from dataclasses import dataclass
from pathlib import Path

logger = logging.getLogger(__name__)


@dataclass
class CommandResult:
    """Outcome of an external command."""
    args: list[str]
    returncode: int
    output: str = ""

    @property
    def ok(self) -> bool:
        return self.returncode == 0

    @property
    def cmdline(self) -> str:
        return shlex.join(self.args)


def run_command(cmd: list[str]) -> CommandResult:
    """Run a command, capturing stdout and stderr together.

    A command that cannot be started is reported with exit status 127,
    the way a shell would.
    """
    logger.debug("running %s", shlex.join(cmd))
    try:
        result = subprocess.run(
            cmd,
            stdout=subprocess.PIPE,
            stderr=subprocess.STDOUT,
            text=True,
        )
    except OSError as e:
        return CommandResult(args=cmd, returncode=127, output=str(e))
    return CommandResult(args=cmd, returncode=result.returncode, output=result.stdout)


class SshKeygen:
    """Generation and host-removal mechanism using OpenSSH's ssh-keygen."""

    def __init__(self, binary: str = "ssh-keygen"):
        self.binary = binary

    def generate(
        self,
        path: Path,
        key_type: str,
        comment: str,
        bits: int | None = None,
    ) -> CommandResult:
        """Write a new unencrypted keypair to ``path`` and ``path.pub``.

        Args:
            path: Private key output path
            key_type: Key type (rsa, ed25519, ecdsa, ...)
            comment: Comment for the key
            bits: Key size in bits (for RSA/ECDSA)
        """
        cmd = [
            self.binary,
            "-q",
            "-t", key_type,
            "-N", "",  # No passphrase
            "-C", comment,
            "-f", str(path),
        ]

        if bits is not None:
            cmd.extend(["-b", str(bits)])

        return run_command(cmd)

    def remove_host(self, hostname: str, known_hosts: Path) -> CommandResult:
        """Remove all keys belonging to ``hostname`` from a known_hosts file."""
        return run_command([self.binary, "-q", "-R", hostname, "-f", str(known_hosts)])

"""known_hosts and authorized_keys ledgers.

Both ledgers are plain text files living next to the keys. The first line
is a header comment written once, when the file is created; every other
line is a trusted key record:

    # managed by sshkeystore
    host1,host1.example.com,192.0.2.10 ssh-rsa AAAA... host1

Records are only ever appended. Host-key registration is the one place
where lines are removed: stale entries for the same hostname are purged
through the removal mechanism (``ssh-keygen -R``) before the new record
is written, so host-key matching is never re-implemented here. Records of
the other keys the directory holds for that host are written back with it.
"""

import fcntl
import logging
import os
import tempfile
from pathlib import Path
from typing import Iterable, Protocol

from .errors import KeyReadError, TrustRegistrationError
from .request import AUTHORIZED_KEYS, KNOWN_HOSTS
from .ssh import CommandResult
from .store import KeyStore

logger = logging.getLogger(__name__)

DEFAULT_HEADER = "# managed by sshkeystore"


class HostRemovalMechanism(Protocol):
    def remove_host(self, hostname: str, known_hosts: Path) -> CommandResult:
        """Remove all entries for ``hostname`` from ``known_hosts``."""
        ...


def host_record_prefix(
    hostname: str,
    fqdn: str,
    ip_address: str,
    aliases: Iterable[str] = (),
) -> str:
    """Build the comma separated host list of a known_hosts record.

    Empty and repeated names are dropped.
    """
    names: list[str] = []
    for n in [hostname, fqdn, ip_address, *aliases]:
        if n and n not in names:
            names.append(n)
    return ",".join(names)


class TrustRegistrar:
    """Registers public keys into the ledgers of a key directory."""

    def __init__(self, remover: HostRemovalMechanism, header: str = DEFAULT_HEADER):
        self.remover = remover
        self.header = header

    def register_host_key(
        self,
        directory: Path,
        name: str,
        hostname: str,
        fqdn: str,
        ip_address: str,
        aliases: Iterable[str] = (),
    ) -> bool:
        """Add the public key ``name`` to known_hosts for a host.

        Nothing is written if the exact record is already present.
        Otherwise existing entries for ``hostname`` are removed first.
        A host usually has several keys (rsa, ed25519, ...) in the same
        directory; their records survive the removal and are written back
        unchanged, so registering one never evicts another.

        Returns:
            True if the ledger was changed

        Raises:
            TrustRegistrationError: If removal or the ledger update fails
        """
        if not hostname:
            raise TrustRegistrationError(
                f"cannot register host key {name}: hostname is unknown",
                path=directory / KNOWN_HOSTS,
            )

        known_hosts = self._ensure_ledger(directory / KNOWN_HOSTS)
        key = self._public_key_line(directory, name, known_hosts)
        prefix = host_record_prefix(hostname, fqdn, ip_address, aliases)
        record = f"{prefix} {key}"

        lines = self._records(known_hosts)
        if record in lines:
            logger.debug("%s already trusted in %s", name, known_hosts)
            return False

        # Records of this host that carry another key of this directory
        siblings = self._owned_key_blobs(directory, exclude=name)
        keep = [
            line for line in lines
            if not line.startswith("#")
            and hostname in line.split(" ", 1)[0].split(",")
            and key_blob(line.split(" ", 1)[-1]) in siblings
        ]

        logger.debug("adding key %s to known_hosts file %s", name, known_hosts)
        result = self.remover.remove_host(hostname, known_hosts)
        if not result.ok:
            raise TrustRegistrationError(
                f"calling '{result.cmdline}' resulted in error: {result.output.strip()}",
                path=known_hosts,
                cmdline=result.cmdline,
                output=result.output,
            )

        self._append(known_hosts, *keep, record)
        logger.debug("updated known_hosts file at %s", known_hosts)
        return True

    def register_authorized_key(self, directory: Path, name: str) -> bool:
        """Add the public key ``name`` verbatim to authorized_keys.

        Returns:
            True if the ledger was changed

        Raises:
            TrustRegistrationError: If the ledger cannot be updated
        """
        authorized_keys = self._ensure_ledger(directory / AUTHORIZED_KEYS)
        key = self._public_key_line(directory, name, authorized_keys)

        if key in self._records(authorized_keys):
            logger.debug("%s already authorized in %s", name, authorized_keys)
            return False

        logger.debug("adding key %s to authorized_keys file %s", name, authorized_keys)
        self._append(authorized_keys, key)
        logger.debug("updated authorized_keys file at %s", authorized_keys)
        return True

    def read_known_hosts(self, directory: Path) -> bytes:
        return self._read_ledger(directory / KNOWN_HOSTS)

    def read_authorized_keys(self, directory: Path) -> bytes:
        return self._read_ledger(directory / AUTHORIZED_KEYS)

    def _read_ledger(self, path: Path) -> bytes:
        """Return a ledger's contents, creating it (header only) if missing."""
        try:
            self._create_ledger(path)
            return path.read_bytes()
        except OSError as e:
            raise KeyReadError(path, e) from e

    def _ensure_ledger(self, path: Path) -> Path:
        try:
            self._create_ledger(path)
        except OSError as e:
            raise TrustRegistrationError(f"unable to create {path}: {e}", path=path) from e
        return path

    def _create_ledger(self, path: Path) -> None:
        """Create the ledger with its header unless it already exists.

        The header is written to a scratch file which is then hard-linked
        into place, so the ledger never exists without its header and
        concurrent creators cannot both succeed.
        """
        if path.exists():
            return

        fd, tmp = tempfile.mkstemp(prefix=f".{path.name}.", dir=path.parent)
        try:
            with os.fdopen(fd, "w") as f:
                f.write(f"{self.header}\n")
            os.chmod(tmp, 0o644)
            try:
                os.link(tmp, path)
            except FileExistsError:
                return
            logger.debug("created ledger %s", path)
        finally:
            os.unlink(tmp)

    @staticmethod
    def _public_key_line(directory: Path, name: str, ledger: Path) -> str:
        store = KeyStore(directory)
        try:
            key = store.read_public(name).decode()
        except (KeyReadError, UnicodeDecodeError) as e:
            raise TrustRegistrationError(
                f"unable to read public key for {name}: {e}",
                path=ledger,
            ) from e
        return key.rstrip("\r\n")

    def _owned_key_blobs(self, directory: Path, exclude: str) -> set[str]:
        """Return the ``type blob`` of every other keypair in ``directory``."""
        ledger = directory / KNOWN_HOSTS
        return {
            key_blob(self._public_key_line(directory, other, ledger))
            for other in KeyStore(directory).list_keys()
            if other != exclude
        }

    @staticmethod
    def _records(path: Path) -> list[str]:
        try:
            text = path.read_text()
        except OSError as e:
            raise TrustRegistrationError(f"unable to read {path}: {e}", path=path) from e
        return text.splitlines()

    @staticmethod
    def _append(path: Path, *lines: str) -> None:
        """Append ``lines`` under an exclusive lock.

        A hand-edited ledger may lack its final newline; one is added
        first so the new record starts on a line of its own.
        """
        data = "".join(f"{line}\n" for line in lines).encode()
        try:
            with open(path, "ab+") as f:
                fcntl.flock(f, fcntl.LOCK_EX)
                try:
                    if f.seek(0, os.SEEK_END) > 0:
                        f.seek(-1, os.SEEK_END)
                        if f.read(1) != b"\n":
                            data = b"\n" + data
                    f.write(data)
                    f.flush()
                finally:
                    fcntl.flock(f, fcntl.LOCK_UN)
        except OSError as e:
            raise TrustRegistrationError(f"unable to append to {path}: {e}", path=path) from e


def key_blob(key: str) -> str:
    """Return the ``type base64`` part of a public key line, without comment."""
    return " ".join(key.split()[:2])

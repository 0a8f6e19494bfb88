"""Key request model.

A request is what the provisioning layer hands us: which key, where it
lives, whether it is a host or an authentication key, and which artifact
should come back. Example (as it appears in a batch file):

    - name: host1.example.com
      request: private
      dir: ssh/hostkeys
      hostkey: true
      hostaliases: [host1, www]
"""

import socket
from collections.abc import Mapping
from dataclasses import dataclass, field, replace
from enum import Enum
from pathlib import PurePosixPath
from typing import Any

from .errors import InvalidRequestError


DEFAULT_KEY_TYPE = "rsa"
DEFAULT_DIR = "ssh"

KNOWN_HOSTS = "known_hosts"
AUTHORIZED_KEYS = "authorized_keys"


class RequestKind(str, Enum):
    """Which artifact a request resolves to."""
    PUBLIC = "public"
    PRIVATE = "private"
    KNOWN_HOSTS = KNOWN_HOSTS
    AUTHORIZED_KEYS = AUTHORIZED_KEYS

    @property
    def is_ledger(self) -> bool:
        return self in (RequestKind.KNOWN_HOSTS, RequestKind.AUTHORIZED_KEYS)


@dataclass(frozen=True)
class HostFacts:
    """Identity of the host a key is provisioned on."""
    hostname: str = ""
    fqdn: str = ""
    ip_address: str = ""

    @classmethod
    def detect(cls) -> "HostFacts":
        """Read the facts for the machine we are running on."""
        fqdn = socket.getfqdn()
        hostname = socket.gethostname().split(".")[0]
        try:
            ip_address = socket.gethostbyname(fqdn)
        except OSError:
            ip_address = ""
        return cls(hostname=hostname, fqdn=fqdn, ip_address=ip_address)


def _parse_kind(value: Any) -> RequestKind:
    if value is None or value == "":
        raise InvalidRequestError("request argument is required")
    try:
        return RequestKind(value)
    except ValueError:
        valid = ", ".join(k.value for k in RequestKind)
        raise InvalidRequestError(f"invalid request '{value}' (expected one of: {valid})")


def _check_type(field_name: str, value: Any, expected: type, optional: bool = False) -> None:
    if value is None and optional:
        return
    # bool is an int, but "bits: true" is not a key size
    if not isinstance(value, expected) or (expected is int and isinstance(value, bool)):
        raise InvalidRequestError(
            f"invalid {field_name} {value!r} (expected {expected.__name__})"
        )


def _check_name(name: str) -> None:
    if name in ("", ".", "..") or "/" in name or "\0" in name:
        raise InvalidRequestError(f"invalid key name '{name}'")
    if name in (KNOWN_HOSTS, AUTHORIZED_KEYS) or name.endswith(".pub"):
        raise InvalidRequestError(f"key name '{name}' collides with a managed file")


def _check_directory(directory: str) -> None:
    path = PurePosixPath(directory)
    if not directory or path.is_absolute() or ".." in path.parts:
        raise InvalidRequestError(
            f"invalid directory '{directory}' (must be relative, without '..')"
        )


@dataclass
class KeyRequest:
    """A validated request for key material.

    Attributes:
        request_kind: Which artifact to return
        name: Key name; optional for the two ledger kinds
        key_type: Key type passed to the generator
        directory: Key directory, relative to the store's base path
        hostkey: Register the key in known_hosts
        authkey: Register the key in authorized_keys
        comment: Key comment; derived from the host facts when unset
        host_aliases: Extra names written into the known_hosts record
        bits: Key size in bits, if the generator should not pick one
        host: Host identity used for comments and known_hosts records
    """
    request_kind: RequestKind
    name: str | None = None
    key_type: str = DEFAULT_KEY_TYPE
    directory: str = DEFAULT_DIR
    hostkey: bool = False
    authkey: bool = False
    comment: str | None = None
    host_aliases: list[str] = field(default_factory=list)
    bits: int | None = None
    host: HostFacts = field(default_factory=HostFacts)

    def __post_init__(self):
        self.request_kind = _parse_kind(self.request_kind)

        _check_type("name", self.name, str, optional=True)
        _check_type("directory", self.directory, str)
        _check_type("key type", self.key_type, str)
        _check_type("hostkey flag", self.hostkey, bool)
        _check_type("authkey flag", self.authkey, bool)
        _check_type("comment", self.comment, str, optional=True)
        _check_type("key size", self.bits, int, optional=True)
        _check_type("host aliases", self.host_aliases, list)
        for alias in self.host_aliases:
            _check_type("host alias", alias, str)
        for fact in ("hostname", "fqdn", "ip_address"):
            _check_type(fact, getattr(self.host, fact), str)

        if self.name is None:
            if not self.request_kind.is_ledger:
                raise InvalidRequestError("name argument is required")
        else:
            _check_name(self.name)

        _check_directory(self.directory)

        if not self.key_type:
            raise InvalidRequestError("key type must not be empty")
        if self.bits is not None and self.bits <= 0:
            raise InvalidRequestError(f"invalid key size {self.bits}")

        # A host key is named after its host unless told otherwise
        if self.hostkey and self.name and not self.host.hostname:
            self.host = replace(self.host, hostname=self.name)

        # An explicit empty comment is kept as-is
        if self.comment is None:
            if self.hostkey:
                self.comment = self.host.hostname
            elif self.authkey:
                self.comment = f"root@{self.host.hostname}"

    @classmethod
    def from_dict(
        cls,
        data: Mapping,
        host: HostFacts | None = None,
        default_type: str = DEFAULT_KEY_TYPE,
        default_dir: str = DEFAULT_DIR,
    ) -> "KeyRequest":
        """Build a request from a provisioning-layer mapping.

        Host facts given in the mapping (hostname, fqdn, ipaddress) take
        precedence over ``host``.
        """
        if not isinstance(data, Mapping):
            raise InvalidRequestError("config argument must be a mapping")

        base = host or HostFacts()
        facts = HostFacts(
            hostname=data.get("hostname", base.hostname),
            fqdn=data.get("fqdn", base.fqdn),
            ip_address=data.get("ipaddress", base.ip_address),
        )

        aliases = data.get("hostaliases") or []
        if isinstance(aliases, str):
            aliases = [aliases]
        elif isinstance(aliases, tuple):
            aliases = list(aliases)

        # Values are passed through unconverted; __post_init__ checks types
        return cls(
            request_kind=data.get("request"),  # type: ignore[arg-type]
            name=data.get("name"),
            key_type=data.get("type", default_type),
            directory=data.get("dir", default_dir),
            hostkey=data.get("hostkey", False),
            authkey=data.get("authkey", False),
            comment=data.get("comment"),
            host_aliases=aliases,
            bits=data.get("bits"),
            host=facts,
        )

    def to_dict(self) -> dict[str, Any]:
        d: dict[str, Any] = {
            "request": self.request_kind.value,
            "type": self.key_type,
            "dir": self.directory,
            "hostkey": self.hostkey,
            "authkey": self.authkey,
        }
        if self.name is not None:
            d["name"] = self.name
        if self.comment is not None:
            d["comment"] = self.comment
        if self.host_aliases:
            d["hostaliases"] = self.host_aliases
        if self.bits is not None:
            d["bits"] = self.bits
        return d

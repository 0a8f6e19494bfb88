"""Fulfil key requests from the provisioning layer."""

import logging
from collections.abc import Mapping
from typing import Protocol

from .config import Settings
from .errors import KeyRequestError
from .keygen import KeyGenerationMechanism, KeyGenerator
from .ledger import HostRemovalMechanism, TrustRegistrar
from .request import HostFacts, KeyRequest, RequestKind
from .ssh import SshKeygen
from .store import KeyStore

logger = logging.getLogger(__name__)


class KeyMechanism(KeyGenerationMechanism, HostRemovalMechanism, Protocol):
    """Generates keypairs and removes known_hosts entries, like ssh-keygen."""


class KeyRequestService:
    """Entry point: make sure a key exists and hand back what was asked for.

    ``keygen`` provides both key generation and known_hosts entry removal;
    it defaults to the ssh-keygen binary named in the settings.
    """

    def __init__(
        self,
        settings: Settings | None = None,
        keygen: KeyMechanism | None = None,
        host: HostFacts | None = None,
    ):
        self.settings = settings or Settings()
        self.host = host or HostFacts()

        mechanism = keygen or SshKeygen(self.settings.ssh_keygen)
        self.generator = KeyGenerator(mechanism, private_key_mode=self.settings.private_key_mode)
        self.registrar = TrustRegistrar(mechanism, header=self.settings.ledger_header)

    def build_request(self, data: Mapping) -> KeyRequest:
        """Turn a provisioning-layer mapping into a validated request."""
        return KeyRequest.from_dict(
            data,
            host=self.host,
            default_type=self.settings.default_type,
            default_dir=self.settings.default_dir,
        )

    def fulfil(self, request: KeyRequest | Mapping) -> str:
        """Ensure the requested key exists and return the requested artifact.

        Raises:
            InvalidRequestError: If the request is incomplete
            KeyRequestError: If anything fails after validation; the
                original error is available as ``cause``
        """
        if not isinstance(request, KeyRequest):
            request = self.build_request(request)

        try:
            return self._fulfil(request)
        except Exception as e:
            raise KeyRequestError(request.request_kind.value, request.name, e) from e

    def _fulfil(self, request: KeyRequest) -> str:
        full_path = self.settings.base_path / request.directory
        store = KeyStore(full_path)
        store.ensure_directory()

        if request.name is not None:
            status = self.generator.ensure_keypair(
                full_path,
                request.name,
                request.comment,
                request.key_type,
                bits=request.bits,
            )
            if status.created:
                logger.info("generated %s key %s", request.key_type, status.private_path)
            else:
                logger.debug(
                    "key already exists, using previously created key in '%s' request",
                    request.request_kind.value,
                )

            # Registration is idempotent, so it also backfills keys that
            # predate their hostkey/authkey flag
            if request.hostkey:
                self.registrar.register_host_key(
                    full_path,
                    request.name,
                    request.host.hostname,
                    request.host.fqdn,
                    request.host.ip_address,
                    aliases=request.host_aliases,
                )
            if request.authkey:
                self.registrar.register_authorized_key(full_path, request.name)

        if request.request_kind is RequestKind.PUBLIC:
            data = store.read_public(request.name)  # type: ignore[arg-type]
        elif request.request_kind is RequestKind.PRIVATE:
            data = store.read_private(request.name)  # type: ignore[arg-type]
        elif request.request_kind is RequestKind.KNOWN_HOSTS:
            data = self.registrar.read_known_hosts(full_path)
        elif request.request_kind is RequestKind.AUTHORIZED_KEYS:
            data = self.registrar.read_authorized_keys(full_path)
        else:
            raise AssertionError(f"unhandled request kind {request.request_kind!r}")

        return data.decode()

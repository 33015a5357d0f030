"""Per-cluster TLS material used when serving clients."""

from __future__ import annotations

import dataclasses
import logging
from dataclasses import dataclass, field
from typing import Any, Optional, Tuple

from cryptography import x509
from cryptography.exceptions import UnsupportedAlgorithm
from cryptography.hazmat.primitives import serialization
from cryptography.x509.oid import ExtendedKeyUsageOID

from kubegw.spec import SecureServing

logger = logging.getLogger(__name__)

Certificates = Tuple[x509.Certificate, ...]
KeyPair = Tuple[Certificates, Any]


@dataclass(frozen=True)
class VerifyOptions:
    """Roots and key usages used to verify client certificates."""

    roots: Certificates
    key_usages: Tuple[x509.ObjectIdentifier, ...] = (ExtendedKeyUsageOID.CLIENT_AUTH,)


@dataclass(frozen=True)
class ServingTLSConfig:
    """Client CAs and serving certificates for one cluster."""

    client_cas: Optional[Certificates]
    certificates: Tuple[KeyPair, ...]


def _parse_client_cas(data: bytes) -> Certificates:
    try:
        return tuple(x509.load_pem_x509_certificates(data))
    except (ValueError, TypeError) as exc:
        raise ValueError(f"unable to load client CA file {data!r}: {exc}") from exc


def _public_der(key: Any) -> bytes:
    return key.public_bytes(
        serialization.Encoding.DER, serialization.PublicFormat.SubjectPublicKeyInfo
    )


def _load_key_pair(cert_data: bytes, key_data: bytes) -> KeyPair:
    try:
        chain = tuple(x509.load_pem_x509_certificates(cert_data))
        key = serialization.load_pem_private_key(key_data, password=None)
        if _public_der(chain[0].public_key()) != _public_der(key.public_key()):
            raise ValueError("private key does not match public key")
    except (ValueError, TypeError, UnsupportedAlgorithm) as exc:
        raise ValueError(f"invalid serving cert keypair: {exc}") from exc
    return chain, key


@dataclass(frozen=True)
class SecureServingConfig:
    """The secure serving spec last applied and the material derived from it."""

    secure_serving: SecureServing = field(default_factory=SecureServing)
    client_ca: Optional[Certificates] = None
    certs: Tuple[KeyPair, ...] = ()
    verify_options: Optional[VerifyOptions] = None

    def tls_config(self) -> Optional[ServingTLSConfig]:
        """The TLS config to serve with, or None when there is nothing to add."""
        if not self.certs and self.client_ca is None:
            return None
        return ServingTLSConfig(client_cas=self.client_ca, certificates=self.certs)

    def updated(self, new_secure_serving: SecureServing) -> "SecureServingConfig":
        """Apply a new spec, keeping whatever did not change; raises ValueError on bad PEM."""
        old = self.secure_serving
        if old == new_secure_serving:
            return self

        client_ca = self.client_ca
        verify_options = self.verify_options
        certs = self.certs

        if old.client_ca_data != new_secure_serving.client_ca_data:
            if not new_secure_serving.client_ca_data:
                logger.info("[cluster info] cleanup clientCA and verifyOptions")
                client_ca = None
                verify_options = None
            else:
                client_ca = _parse_client_cas(new_secure_serving.client_ca_data)
                verify_options = VerifyOptions(roots=client_ca)
                logger.info("[cluster info] update clientCA and verifyOptions")

        if (
            old.key_data != new_secure_serving.key_data
            or old.cert_data != new_secure_serving.cert_data
        ):
            key_data = new_secure_serving.key_data
            cert_data = new_secure_serving.cert_data
            if not key_data and not cert_data:
                logger.info("[cluster info] cleanup key and cert")
                certs = ()
            elif key_data and cert_data:
                certs = (_load_key_pair(cert_data, key_data),)
                logger.info("[cluster info] update key and cert")

        return SecureServingConfig(
            secure_serving=dataclasses.replace(new_secure_serving),
            client_ca=client_ca,
            certs=certs,
            verify_options=verify_options,
        )
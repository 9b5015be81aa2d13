"""Certificate provider contract.

Certificate issuance lives outside this package; the engine only reaches
it through ``CertificateProvider.generate`` when an action item asks for a
certificate.
"""

from __future__ import annotations

from typing import Protocol, runtime_checkable

from pydantic import BaseModel, ConfigDict

from limepkg.models.certificates import CertificateRequest


class Certificate(BaseModel):
    """PEM-encoded certificate and private key."""

    model_config = ConfigDict(frozen=True)

    certificate_pem: bytes
    private_key_pem: bytes
    common_name: str = ""


@runtime_checkable
class CertificateProvider(Protocol):
    """Protocol for certificate issuing backends."""

    def generate(self, request: CertificateRequest) -> Certificate:
        """Issue a certificate for ``request``; raise on failure."""
        ...

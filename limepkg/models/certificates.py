"""Certificate request models carried in action item payloads."""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, ConfigDict, Field, ValidationInfo, field_validator

from limepkg.models.enums import TextEnum


class KeyAlgorithm(TextEnum):
    """Private key algorithm."""

    RSA = "rsa"
    ECDSA = "ecdsa"

    @property
    def default_size(self) -> int:
        return _DEFAULT_KEY_SIZES[self]

    def valid_size(self, size: int) -> bool:
        return size in _VALID_KEY_SIZES[self]


_DEFAULT_KEY_SIZES = {KeyAlgorithm.RSA: 2048, KeyAlgorithm.ECDSA: 256}
_VALID_KEY_SIZES = {
    KeyAlgorithm.RSA: frozenset({2048, 3072, 4096, 8192}),
    KeyAlgorithm.ECDSA: frozenset({256, 384, 521}),
}


class _CertificateModel(BaseModel):
    model_config = ConfigDict(frozen=True, populate_by_name=True)


class CertificateName(_CertificateModel):
    """Subject fields."""

    country: str = Field(default="", alias="C")
    province: str = Field(default="", alias="ST")
    locality: str = Field(default="", alias="L")
    organization: str = Field(default="", alias="O")
    organizational_unit: str = Field(default="", alias="OU")
    serial_number: str = Field(default="", alias="serialNumber")


class CertificateKeyRequest(_CertificateModel):
    algorithm: KeyAlgorithm = KeyAlgorithm.RSA
    size: int = Field(default=0, validate_default=True)

    @field_validator("algorithm", mode="before")
    @classmethod
    def _parse_algorithm(cls, value: Any) -> Any:
        if isinstance(value, str):
            return KeyAlgorithm.parse(value)
        return value

    @field_validator("size")
    @classmethod
    def _check_size(cls, value: int, info: ValidationInfo) -> int:
        algorithm = info.data.get("algorithm")
        if algorithm is None:
            return value
        if value == 0:
            return algorithm.default_size
        if not algorithm.valid_size(value):
            raise ValueError(f"invalid {algorithm.value} key size {value}")
        return value


class CertificatePath(_CertificateModel):
    """Where the generated certificate and private key are written."""

    certificate: str = Field(alias="cert")
    key: str


class CertificateRequest(_CertificateModel):
    key: CertificateKeyRequest = Field(default_factory=CertificateKeyRequest)
    common_name: str = Field(default="", alias="commonName")
    names: list[CertificateName] = Field(default_factory=list)
    hosts: list[str] = Field(default_factory=list)
    serial_number: str = Field(default="", alias="serialNumber")
    usage: list[str] = Field(default_factory=list)
    expires_hours: int = Field(default=0, ge=0, alias="expires")
    is_ca: bool = Field(default=False, alias="ca")
    path: CertificatePath

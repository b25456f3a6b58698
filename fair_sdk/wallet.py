"""
Wallet seam for the Fair SDK.

The SDK only needs an address and a way to get payloads signed. Anything
that provides those two (a browser bridge, a hardware signer, a JWK file)
can act as the wallet.
"""
import base64
import hashlib
import json
import logging
from pathlib import Path
from typing import Any, Dict, Protocol, Sequence, Union, runtime_checkable

from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.asymmetric import padding, rsa

from .models import Tag

logger = logging.getLogger(__name__)

JWK_FIELDS = ("n", "e", "d", "p", "q", "dp", "dq", "qi")


@runtime_checkable
class Wallet(Protocol):
    """Anything that can identify itself and sign data items"""

    @property
    def address(self) -> str:
        ...

    def sign_data_item(self, data: bytes, tags: Sequence[Tag]) -> bytes:
        ...


def b64url_decode(value: str) -> bytes:
    padding_len = -len(value) % 4
    return base64.urlsafe_b64decode(value + "=" * padding_len)


def b64url_encode(raw: bytes) -> str:
    return base64.urlsafe_b64encode(raw).rstrip(b"=").decode("ascii")


def load_jwk(path: Union[str, Path]) -> Dict[str, Any]:
    """
    Read an RSA JWK key file.

    Raises:
        ValueError: If the file is not a JSON object with an RSA modulus
    """
    with open(path, "r", encoding="utf-8") as f:
        jwk = json.load(f)
    if not isinstance(jwk, dict) or "n" not in jwk:
        raise ValueError(f"{path} is not an RSA JWK")
    return jwk


def address_from_jwk(jwk: Dict[str, Any]) -> str:
    """Ledger address of a key: base64url(sha256(modulus))"""
    return b64url_encode(hashlib.sha256(b64url_decode(jwk["n"])).digest())


def data_item_digest(data: bytes, tags: Sequence[Tag]) -> bytes:
    """Digest that gets signed: sha256 over the canonical tag list followed by the payload"""
    encoded_tags = json.dumps([[t.name, t.value] for t in tags], separators=(",", ":")).encode("utf-8")
    return hashlib.sha256(encoded_tags + data).digest()


class JwkWallet:
    """Wallet backed by an RSA private JWK, signing with RSA-PSS/SHA-256"""

    def __init__(self, jwk: Dict[str, Any]):
        missing = [field for field in JWK_FIELDS if field not in jwk]
        if missing:
            raise ValueError(f"JWK is missing private fields: {', '.join(missing)}")
        self._jwk = jwk
        self._address = address_from_jwk(jwk)
        ints = {field: int.from_bytes(b64url_decode(jwk[field]), "big") for field in JWK_FIELDS}
        public_numbers = rsa.RSAPublicNumbers(ints["e"], ints["n"])
        self._private_key = rsa.RSAPrivateNumbers(
            p=ints["p"], q=ints["q"], d=ints["d"],
            dmp1=ints["dp"], dmq1=ints["dq"], iqmp=ints["qi"],
            public_numbers=public_numbers,
        ).private_key()

    @classmethod
    def from_file(cls, path: Union[str, Path]) -> "JwkWallet":
        return cls(load_jwk(path))

    @property
    def address(self) -> str:
        return self._address

    @property
    def owner(self) -> str:
        """Public modulus, as the ledger expects it in ``owner.key``"""
        return self._jwk["n"]

    def sign_data_item(self, data: bytes, tags: Sequence[Tag]) -> bytes:
        return self._private_key.sign(
            data_item_digest(data, tags),
            padding.PSS(mgf=padding.MGF1(hashes.SHA256()), salt_length=32),
            hashes.SHA256(),
        )

    def __repr__(self) -> str:
        # Never print key material
        return f"JwkWallet(address={self._address!r})"

"""Test verifier: the production JWKS verifier with a fixed local key.

Only key lookup differs, so tokens in tests go through the same claim
checks and error mapping as in production. The RSA keypair is generated
once per test process.
"""

from functools import lru_cache
from types import SimpleNamespace

from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import rsa

from chatroute.auth.verifier import JwksTokenVerifier

TEST_ISSUER = "test-issuer"
TEST_AUDIENCE = "test-audience"


def generate_private_key_pem() -> bytes:
    """A fresh 2048-bit RSA private key as unencrypted PKCS8 PEM."""
    key = rsa.generate_private_key(public_exponent=65537, key_size=2048)
    return key.private_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PrivateFormat.PKCS8,
        encryption_algorithm=serialization.NoEncryption(),
    )


@lru_cache(maxsize=1)
def _keypair() -> tuple[bytes, bytes]:
    private_pem = generate_private_key_pem()
    public_pem = (
        serialization.load_pem_private_key(private_pem, password=None)
        .public_key()
        .public_bytes(
            encoding=serialization.Encoding.PEM,
            format=serialization.PublicFormat.SubjectPublicKeyInfo,
        )
    )
    return private_pem, public_pem


class MockJwtVerifier(JwksTokenVerifier):
    def __init__(self, issuer: str = TEST_ISSUER, audiences: list[str] | None = None):
        super().__init__(
            jwks_url="http://jwks.invalid/.well-known/jwks.json",
            issuer=issuer,
            audiences=audiences or [TEST_AUDIENCE],
        )

    @staticmethod
    def get_private_key() -> bytes:
        return _keypair()[0]

    @staticmethod
    def get_public_key() -> bytes:
        return _keypair()[1]

    def _signing_key(self, token: str):
        return SimpleNamespace(key=self.get_public_key())

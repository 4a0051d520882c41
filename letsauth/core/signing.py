"""Assertion signing and verification keys.

Assertions travel as compact JWS (JWT) strings whose payload is exactly the
assertion fields. Two schemes are supported:

- HS256: a secret shared out-of-band between IdP and RP (closed deployments)
- ES256: an IdP key pair; the IdP publishes its public keys as a JWKS at
  /.well-known/letsauth/jwks.json and the RP pins a public key or fetches
  that JWKS

Key ids are RFC 7638 JWK thumbprints, so a rotated-out key keeps the same
kid it signed with and can stay in the JWKS until its assertions expire.
"""

import asyncio
import base64
import hashlib
import json
from typing import Any

import jwt
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import ec
from jwt import PyJWKClient
from jwt.algorithms import ECAlgorithm

HS256 = "HS256"
ES256 = "ES256"

# Our own lifetime checks run after signature verification; PyJWT's
# registered-claim checks stay off.
_DECODE_OPTIONS = {
    "verify_exp": False,
    "verify_nbf": False,
    "verify_iat": False,
    "verify_aud": False,
    "verify_iss": False,
}


class SigningKeyError(Exception):
    """Verification key could not be resolved for an assertion."""


class KeySourceUnavailableError(SigningKeyError):
    """The issuer's JWKS endpoint could not be reached."""


def generate_private_key_pem() -> str:
    """Generate a new P-256 private key in PKCS#8 PEM form."""
    key = ec.generate_private_key(ec.SECP256R1())
    return key.private_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PrivateFormat.PKCS8,
        encryption_algorithm=serialization.NoEncryption(),
    ).decode()


def public_key_pem(private_key_pem: str) -> str:
    """Derive the SubjectPublicKeyInfo PEM for a private key PEM."""
    private_key = serialization.load_pem_private_key(
        private_key_pem.encode(), password=None
    )
    return (
        private_key.public_key()
        .public_bytes(
            encoding=serialization.Encoding.PEM,
            format=serialization.PublicFormat.SubjectPublicKeyInfo,
        )
        .decode()
    )


def _public_jwk(public_key: ec.EllipticCurvePublicKey) -> dict[str, Any]:
    """Export an EC public key as a JWK carrying its thumbprint kid."""
    jwk = ECAlgorithm.to_jwk(public_key, as_dict=True)
    # RFC 7638: required members only, lexicographic order, no whitespace
    canonical = json.dumps(
        {k: jwk[k] for k in ("crv", "kty", "x", "y")},
        sort_keys=True,
        separators=(",", ":"),
    )
    digest = hashlib.sha256(canonical.encode()).digest()
    kid = base64.urlsafe_b64encode(digest).rstrip(b"=").decode()
    return {**jwk, "kid": kid, "use": "sig", "alg": ES256}


class AssertionSigner:
    """IdP-side signer for assertion claims.

    Args:
        algorithm: "HS256" or "ES256".
        shared_secret: HMAC secret (HS256).
        private_key_pem: PEM-encoded P-256 private key (ES256).
        previous_public_keys_pem: Retired public keys still published.
    """

    def __init__(
        self,
        algorithm: str,
        *,
        shared_secret: str = "",
        private_key_pem: str = "",
        previous_public_keys_pem: list[str] | None = None,
    ) -> None:
        self.algorithm = algorithm
        self._headers: dict[str, str] | None = None
        self._jwks: list[dict[str, Any]] = []

        if algorithm == HS256:
            if not shared_secret:
                raise ValueError("HS256 signing requires a shared secret")
            self._key: Any = shared_secret
            return

        if algorithm != ES256:
            raise ValueError(f"Unsupported assertion algorithm: {algorithm}")
        if not private_key_pem:
            raise ValueError("ES256 signing requires a private key")

        self._key = serialization.load_pem_private_key(
            private_key_pem.encode(), password=None
        )
        current = _public_jwk(self._key.public_key())
        self._headers = {"kid": current["kid"]}
        self._jwks = [current]
        for pem in previous_public_keys_pem or []:
            previous = serialization.load_pem_public_key(pem.encode())
            self._jwks.append(_public_jwk(previous))

    @property
    def key_id(self) -> str | None:
        return self._headers["kid"] if self._headers else None

    def sign(self, claims: dict[str, Any]) -> str:
        """Sign claims into a compact JWS."""
        return jwt.encode(
            claims, self._key, algorithm=self.algorithm, headers=self._headers
        )

    def jwks(self) -> dict[str, Any] | None:
        """Public key set for publication, or None for shared-secret signing."""
        if self.algorithm == HS256:
            return None
        return {"keys": list(self._jwks)}


class VerificationKeyResolver:
    """RP-side source of the key that verifies an assertion's signature.

    Resolution order: shared secret (HS256), pinned public key PEM, then
    the issuer's JWKS fetched with PyJWKClient (keys cached, selected by
    the token's kid).
    """

    def __init__(
        self,
        algorithm: str,
        *,
        shared_secret: str = "",
        public_key_pem: str = "",
        jwks_url: str = "",
    ) -> None:
        self.algorithm = algorithm
        self._static_key: Any = None
        self._jwks_client: PyJWKClient | None = None

        if algorithm == HS256:
            if not shared_secret:
                raise ValueError("HS256 verification requires a shared secret")
            self._static_key = shared_secret
        elif algorithm == ES256:
            if public_key_pem:
                self._static_key = serialization.load_pem_public_key(
                    public_key_pem.encode()
                )
            elif jwks_url:
                self._jwks_client = PyJWKClient(jwks_url, cache_keys=True)
            else:
                raise ValueError("ES256 verification requires a public key or JWKS URL")
        else:
            raise ValueError(f"Unsupported assertion algorithm: {algorithm}")

    async def resolve(self, token: str) -> Any:
        """Return the verification key for a token.

        Raises:
            KeySourceUnavailableError: JWKS endpoint unreachable.
            SigningKeyError: No published key matches the token.
        """
        if self._jwks_client is None:
            return self._static_key
        try:
            # PyJWKClient fetches with blocking urllib; keep it off the loop
            signing_key = await asyncio.to_thread(
                self._jwks_client.get_signing_key_from_jwt, token
            )
        except jwt.PyJWKClientConnectionError as exc:
            raise KeySourceUnavailableError(str(exc)) from exc
        except (jwt.PyJWKClientError, jwt.DecodeError) as exc:
            raise SigningKeyError(str(exc)) from exc
        return signing_key.key

    def verify(self, token: str, key: Any) -> dict[str, Any]:
        """Verify a token's signature and return its payload.

        Only the configured algorithm is accepted.

        Raises:
            jwt.InvalidTokenError: Signature or structure is invalid.
        """
        return jwt.decode(
            token,
            key,
            algorithms=[self.algorithm],
            options=_DECODE_OPTIONS,
        )


def read_unverified(token: str) -> dict[str, Any]:
    """Decode a token's payload without checking its signature.

    Raises:
        jwt.DecodeError: Token is not a well-formed JWS with a JSON object payload.
    """
    payload = jwt.decode(token, options={"verify_signature": False})
    if not isinstance(payload, dict):
        raise jwt.DecodeError("Assertion payload must be a JSON object")
    return payload

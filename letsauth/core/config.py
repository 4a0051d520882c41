"""Application configuration loaded from environment variables.

Settings for both protocol roles (IdP and RP), the TTL stores, assertion
signing, link delivery, and HTTP hardening. Uses pydantic-settings for
validation and .env file support.
"""

from typing import Literal

from pydantic import SecretStr, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from letsauth.core.errors import InvalidURIError
from letsauth.core.origin import canonicalize

# Minimum length for shared secrets in production (256 bits = 32 bytes)
_MIN_SECRET_LENGTH = 32

_ASYMMETRIC_ALGORITHMS = frozenset({"ES256"})


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
    )

    # Which protocol surfaces this process serves
    role: Literal["idp", "rp", "both"] = "both"

    # API
    # 0.0.0.0 binds to all network interfaces (required for Docker containers)
    # TLS is terminated by a reverse proxy in front of this service.
    api_host: str = "0.0.0.0"  # nosec B104
    api_port: int = 4430

    # CORS
    allowed_origins: list[str] = ["http://localhost:8080"]

    # Application
    environment: str = "development"
    log_level: str = "INFO"

    # Identity Provider
    # Base URL of the IdP as seen by browsers. Its canonical origin is the
    # issuer named in every minted assertion.
    idp_base_url: str = "http://localhost:4430"
    pending_request_ttl_seconds: int = 15 * 60
    assertion_lifetime_seconds: int = 10 * 60
    # Return the confirmation link in the /auth response (development only)
    expose_confirmation_link: bool = False

    # Relying Party
    rp_origin: str = "http://localhost:8080"
    expected_issuer: str = "http://localhost:4430"
    clock_skew_seconds: int = 5 * 60

    # Assertion signing
    # HS256: pre-shared secret known to IdP and RP (closed deployments)
    # ES256: IdP key pair; public key published at /.well-known/letsauth/jwks.json
    assertion_algorithm: Literal["HS256", "ES256"] = "HS256"
    assertion_shared_secret: SecretStr = SecretStr("")
    idp_private_key_pem: SecretStr = SecretStr("")
    # Retired public keys still listed in the JWKS during rotation
    idp_previous_public_keys_pem: list[str] = []
    # RP side: pin the IdP public key, or fetch the IdP JWKS
    rp_issuer_public_key_pem: str = ""
    rp_issuer_jwks_url: str = ""

    # Stores
    store_backend: Literal["memory", "redis"] = "memory"
    redis_url: str = "redis://localhost:6379/0"
    store_timeout_seconds: float = 2.0
    # In-memory backend only: seconds between background sweeps of expired entries
    store_sweep_interval_seconds: float = 60.0

    # Link delivery
    link_sink: Literal["log", "resend"] = "log"
    email_from: str = "noreply@letsauth.example"
    resend_api_key: SecretStr = SecretStr("")

    # RP session cookie
    session_secret: SecretStr = SecretStr("")
    session_issuer: str = "letsauth-rp"
    session_cookie_name: str = "letsauth.session"
    session_cookie_secure: bool = True
    session_cookie_samesite: Literal["lax", "strict", "none"] = "lax"
    session_lifetime_seconds: int = 60 * 60

    # Rate limiting
    # Format: "count/period" (e.g., "10/minute", "100/hour")
    rate_limit_auth: str = "5/minute"
    rate_limit_confirm: str = "10/minute"
    rate_limit_authback: str = "30/minute"
    rate_limit_enabled: bool = True

    @property
    def serves_idp(self) -> bool:
        """True when this process exposes the IdP routes."""
        return self.role in ("idp", "both")

    @property
    def serves_rp(self) -> bool:
        """True when this process exposes the RP routes."""
        return self.role in ("rp", "both")

    @model_validator(mode="after")
    def check_security(self) -> "Settings":
        """Validate protocol and production security requirements.

        Checks:
        - TTLs, assertion lifetime, and clock skew must be positive
        - IdP, RP, and issuer URLs must be absolute http(s) URLs
        - SameSite=None requires Secure flag (browser requirement)
        - CORS must not use wildcard origin
        - In production: signing material and session secret must be set,
          shared secrets must be >= 32 chars, and the session secret must
          differ from the assertion secret
        - In production an IdP must deliver links by email, never to the log
        """
        for name in (
            "pending_request_ttl_seconds",
            "assertion_lifetime_seconds",
            "clock_skew_seconds",
        ):
            if getattr(self, name) <= 0:
                msg = f"{name.upper()} must be positive. Got: {getattr(self, name)}"
                raise ValueError(msg)

        for name in ("idp_base_url", "rp_origin", "expected_issuer"):
            try:
                canonicalize(getattr(self, name))
            except InvalidURIError as exc:
                msg = f"{name.upper()} must be an absolute http(s) URL."
                raise ValueError(msg) from exc

        for name in ("store_timeout_seconds", "store_sweep_interval_seconds"):
            if getattr(self, name) <= 0:
                msg = f"{name.upper()} must be positive."
                raise ValueError(msg)

        if self.session_cookie_samesite == "none" and not self.session_cookie_secure:
            msg = (
                "SESSION_COOKIE_SECURE must be true when SESSION_COOKIE_SAMESITE=none. "
                "Browsers reject SameSite=None cookies without the Secure flag."
            )
            raise ValueError(msg)

        if "*" in self.allowed_origins:
            msg = "ALLOWED_ORIGINS must not contain '*' (wildcard)."
            raise ValueError(msg)

        if self.environment == "production":
            self._check_production_signing()
            self._check_production_delivery()

        return self

    def _check_production_signing(self) -> None:
        """Reject production deployments with missing or weak key material."""
        if self.assertion_algorithm in _ASYMMETRIC_ALGORITHMS:
            if self.serves_idp and not self.idp_private_key_pem.get_secret_value():
                msg = (
                    "IDP_PRIVATE_KEY_PEM must be set for ES256 in production. "
                    "Generate with: python -m scripts.generate_signing_key"
                )
                raise ValueError(msg)
            if self.serves_rp and not (
                self.rp_issuer_public_key_pem or self.rp_issuer_jwks_url
            ):
                msg = (
                    "RP_ISSUER_PUBLIC_KEY_PEM or RP_ISSUER_JWKS_URL must be set "
                    "for ES256 in production."
                )
                raise ValueError(msg)
        else:
            secret = self.assertion_shared_secret.get_secret_value()
            if len(secret) < _MIN_SECRET_LENGTH:
                msg = (
                    f"ASSERTION_SHARED_SECRET must be at least {_MIN_SECRET_LENGTH} "
                    'characters. Generate with: python -c "import secrets; '
                    'print(secrets.token_hex(32))"'
                )
                raise ValueError(msg)

        if self.serves_rp:
            session_secret = self.session_secret.get_secret_value()
            if len(session_secret) < _MIN_SECRET_LENGTH:
                msg = (
                    f"SESSION_SECRET must be at least {_MIN_SECRET_LENGTH} "
                    "characters for adequate security."
                )
                raise ValueError(msg)
            if session_secret == self.assertion_shared_secret.get_secret_value():
                msg = "SESSION_SECRET must differ from ASSERTION_SHARED_SECRET."
                raise ValueError(msg)

    def _check_production_delivery(self) -> None:
        """Reject production IdPs that would write confirmation links to logs."""
        if not self.serves_idp:
            return
        if self.link_sink == "log":
            msg = (
                "LINK_SINK=log writes confirmation tokens to the log and is not "
                "allowed in production. Set LINK_SINK=resend."
            )
            raise ValueError(msg)
        if not self.resend_api_key.get_secret_value():
            msg = "RESEND_API_KEY must be set when LINK_SINK=resend in production."
            raise ValueError(msg)


settings = Settings()

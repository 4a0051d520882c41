"""Tests for application configuration.

Settings for both protocol roles, the stores, signing, and link delivery.
Tests cover defaults, protocol sanity checks, and production security
validation.
"""

import pytest
from pydantic import ValidationError

from letsauth.core.config import Settings
from letsauth.core.signing import generate_private_key_pem, public_key_pem

# Reusable test constants
_ASSERTION_SECRET = "a" * 64
_SESSION_SECRET = "b" * 64
_PRODUCTION = "production"


def _production(**overrides: object) -> Settings:
    values: dict[str, object] = {
        "environment": _PRODUCTION,
        "assertion_shared_secret": _ASSERTION_SECRET,
        "session_secret": _SESSION_SECRET,
        "link_sink": "resend",
        "resend_api_key": "re_test_key",
    }
    values.update(overrides)
    return Settings(**values)


class TestDefaults:
    """Default values."""

    def test_serves_both_roles(self):
        """A default process is both IdP and RP."""
        s = Settings()
        assert s.role == "both"
        assert s.serves_idp
        assert s.serves_rp

    def test_protocol_timings(self):
        """Pending requests last 15 minutes, assertions 10, skew 5."""
        s = Settings()
        assert s.pending_request_ttl_seconds == 900
        assert s.assertion_lifetime_seconds == 600
        assert s.clock_skew_seconds == 300

    def test_links_not_exposed_by_default(self):
        """Confirmation links stay out-of-band unless explicitly enabled."""
        assert Settings().expose_confirmation_link is False

    @pytest.mark.parametrize(
        ("role", "idp", "rp"),
        [("idp", True, False), ("rp", False, True), ("both", True, True)],
    )
    def test_role_properties(self, role, idp, rp):
        """serves_idp / serves_rp follow the role."""
        s = Settings(role=role)
        assert s.serves_idp is idp
        assert s.serves_rp is rp

    def test_loads_from_environment(self, monkeypatch):
        """Environment variables override defaults, case-insensitively."""
        monkeypatch.setenv("ROLE", "rp")
        monkeypatch.setenv("CLOCK_SKEW_SECONDS", "60")
        monkeypatch.setenv("RP_ORIGIN", "https://rp.example:8443")

        s = Settings()

        assert s.role == "rp"
        assert s.clock_skew_seconds == 60
        assert s.rp_origin == "https://rp.example:8443"


class TestProtocolValidation:
    """Checks that apply in every environment."""

    @pytest.mark.parametrize(
        "field",
        [
            "pending_request_ttl_seconds",
            "assertion_lifetime_seconds",
            "clock_skew_seconds",
        ],
    )
    def test_rejects_non_positive_durations(self, field):
        """Durations must be positive."""
        with pytest.raises(ValidationError, match="must be positive"):
            Settings(**{field: 0})

    def test_rejects_non_positive_store_timeout(self):
        """A zero store timeout would fail every request."""
        with pytest.raises(ValidationError, match="STORE_TIMEOUT_SECONDS"):
            Settings(store_timeout_seconds=0)

    @pytest.mark.parametrize("field", ["idp_base_url", "rp_origin", "expected_issuer"])
    def test_rejects_non_http_urls(self, field):
        """Protocol URLs must be absolute http(s)."""
        with pytest.raises(ValidationError, match="absolute http"):
            Settings(**{field: "ftp://idp.example"})

    def test_rejects_samesite_none_without_secure(self):
        """Browsers drop SameSite=None cookies without Secure."""
        with pytest.raises(ValidationError, match="SESSION_COOKIE_SECURE"):
            Settings(session_cookie_samesite="none", session_cookie_secure=False)

    def test_rejects_wildcard_cors(self):
        """Credentialed CORS cannot use '*'."""
        with pytest.raises(ValidationError, match="wildcard"):
            Settings(allowed_origins=["*"])

    def test_allows_missing_secrets_in_development(self):
        """Development falls back to ephemeral secrets at startup."""
        s = Settings(environment="development")
        assert s.assertion_shared_secret.get_secret_value() == ""


class TestProductionSecurityValidation:
    """Tests for production security requirements."""

    def test_accepts_complete_hs256_configuration(self):
        """Strong, distinct secrets pass."""
        s = _production()
        assert s.environment == _PRODUCTION

    def test_rejects_short_assertion_secret(self):
        """Shared secrets below 32 characters are refused."""
        with pytest.raises(ValidationError, match="ASSERTION_SHARED_SECRET"):
            _production(assertion_shared_secret="short")

    def test_rejects_short_session_secret(self):
        """RP session secrets below 32 characters are refused."""
        with pytest.raises(ValidationError, match="SESSION_SECRET"):
            _production(session_secret="short")

    def test_rejects_session_secret_equal_to_assertion_secret(self):
        """Session and assertion keys must differ."""
        with pytest.raises(ValidationError, match="must differ"):
            _production(session_secret=_ASSERTION_SECRET)

    def test_idp_only_does_not_need_session_secret(self):
        """Session cookies are an RP concern."""
        s = _production(role="idp", session_secret="")
        assert s.serves_rp is False

    def test_es256_idp_requires_private_key(self):
        """An ES256 IdP must be given its key."""
        with pytest.raises(ValidationError, match="IDP_PRIVATE_KEY_PEM"):
            _production(assertion_algorithm="ES256", role="idp")

    def test_es256_rp_requires_key_source(self):
        """An ES256 RP must pin a key or know the JWKS URL."""
        with pytest.raises(ValidationError, match="RP_ISSUER_"):
            _production(assertion_algorithm="ES256", role="rp")

    def test_es256_complete_configuration(self):
        """Key pair plus JWKS URL passes."""
        private_pem = generate_private_key_pem()
        s = _production(
            assertion_algorithm="ES256",
            assertion_shared_secret="",
            idp_private_key_pem=private_pem,
            rp_issuer_public_key_pem=public_key_pem(private_pem),
        )
        assert s.assertion_algorithm == "ES256"

    def test_rejects_log_link_sink(self):
        """Logging sinks would write confirmation tokens to production logs."""
        with pytest.raises(ValidationError, match="LINK_SINK=log"):
            _production(link_sink="log")

    def test_resend_sink_requires_api_key(self):
        """Email delivery needs its API key."""
        with pytest.raises(ValidationError, match="RESEND_API_KEY"):
            _production(resend_api_key="")

    def test_rp_only_may_keep_log_sink(self):
        """Relying parties never deliver links."""
        s = _production(role="rp", link_sink="log")
        assert s.serves_idp is False

from collections.abc import AsyncGenerator, Iterator
from dataclasses import dataclass, field

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient

from letsauth.api.deps import Dependencies
from letsauth.core.config import settings
from letsauth.core.email import LinkSink
from letsauth.core.signing import HS256, AssertionSigner, VerificationKeyResolver
from letsauth.services.nonce_ledger import InMemoryNonceLedger
from letsauth.services.pending_request_store import InMemoryPendingRequestStore

# Test-only secrets. Production uses real secrets from env.
TEST_ASSERTION_SECRET = "test-assertion-secret-that-is-at-least-32-chars"  # nosec B105  # gitleaks:allow
TEST_SESSION_SECRET = "test-session-secret-that-is-at-least-32-characters"  # nosec B105  # gitleaks:allow

TEST_IDP_BASE_URL = "https://idp.example"
TEST_RP_ORIGIN = "https://rp.example:8443"
TEST_RP_ENDPOINT = "https://rp.example:8443/callback"
TEST_EMAIL = "alice@example.com"


@dataclass
class DeliveredLink:
    """A confirmation link captured by RecordingLinkSink."""

    to_email: str
    link: str
    origin: str


@dataclass
class RecordingLinkSink(LinkSink):
    """Link sink that keeps delivered links in memory."""

    delivered: list[DeliveredLink] = field(default_factory=list)

    async def deliver(self, *, to_email: str, link: str, origin: str) -> None:
        self.delivered.append(DeliveredLink(to_email=to_email, link=link, origin=origin))

    @property
    def last(self) -> DeliveredLink:
        return self.delivered[-1]


@pytest.fixture
def signer() -> AssertionSigner:
    """HS256 signer sharing TEST_ASSERTION_SECRET with key_resolver."""
    return AssertionSigner(HS256, shared_secret=TEST_ASSERTION_SECRET)


@pytest.fixture
def key_resolver() -> VerificationKeyResolver:
    """HS256 verification keys matching the signer fixture."""
    return VerificationKeyResolver(HS256, shared_secret=TEST_ASSERTION_SECRET)


@pytest.fixture
def pending_store() -> InMemoryPendingRequestStore:
    """Fresh pending-request store for each test."""
    return InMemoryPendingRequestStore()


@pytest.fixture
def nonce_ledger() -> InMemoryNonceLedger:
    """Fresh nonce ledger for each test."""
    return InMemoryNonceLedger()


@pytest.fixture
def link_sink() -> RecordingLinkSink:
    """Sink that records confirmation links instead of emailing them."""
    return RecordingLinkSink()


@pytest.fixture
def protocol_settings() -> Iterator[None]:
    """Point settings at the test IdP and RP, restoring them afterwards."""
    overrides = {
        "role": "both",
        "idp_base_url": TEST_IDP_BASE_URL,
        "expected_issuer": TEST_IDP_BASE_URL,
        "rp_origin": TEST_RP_ORIGIN,
        "expose_confirmation_link": True,
        "session_cookie_secure": True,
    }
    original = {name: getattr(settings, name) for name in overrides}
    for name, value in overrides.items():
        setattr(settings, name, value)

    yield

    for name, value in original.items():
        setattr(settings, name, value)


@pytest.fixture
def dependencies(
    pending_store: InMemoryPendingRequestStore,
    nonce_ledger: InMemoryNonceLedger,
    signer: AssertionSigner,
    key_resolver: VerificationKeyResolver,
    link_sink: RecordingLinkSink,
) -> Dependencies:
    """In-memory collaborators for a process serving both roles."""
    return Dependencies(
        session_secret=TEST_SESSION_SECRET,
        pending_store=pending_store,
        nonce_ledger=nonce_ledger,
        signer=signer,
        key_resolver=key_resolver,
        link_sink=link_sink,
    )


@pytest_asyncio.fixture
async def client(
    protocol_settings: None,  # noqa: ARG001 - settings must be in place first
    dependencies: Dependencies,
) -> AsyncGenerator[AsyncClient, None]:
    """Async HTTP client for an app serving both IdP and RP routes.

    Sets up:
    - Settings pointing at the test IdP/RP origins
    - In-memory stores, HS256 keys, and a recording link sink
    - httpx.AsyncClient with ASGI transport

    Yields:
        Configured AsyncClient for making API requests.
    """
    from letsauth.main import create_app

    app = create_app()
    app.state.deps = dependencies

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac


@pytest.fixture(autouse=True)
def disable_rate_limiting() -> Iterator[None]:
    """Disable rate limiting during tests.

    Rate limiting is tested separately; disable for other tests
    to avoid flaky failures from rate limit triggers.

    Yields:
        None (autouse fixture).
    """
    from letsauth.core.rate_limiting import limiter

    original_enabled = limiter.enabled
    limiter.enabled = False

    yield

    limiter.enabled = original_enabled

"""Shared dependencies for API endpoints.

Process-lifetime collaborators (stores, signer, key resolver, link sink)
are built once at startup by build_dependencies() and kept on app.state.
Endpoints receive them through the Annotated dependencies below; tests
install their own Dependencies on app.state before the first request.
"""

import secrets
from dataclasses import dataclass
from typing import Annotated, TypeVar

import structlog
from fastapi import Depends, FastAPI, Request

from letsauth.core.config import Settings, settings
from letsauth.core.email import LinkSink, LoggingLinkSink, ResendLinkSink
from letsauth.core.errors import InternalError
from letsauth.core.signing import (
    ES256,
    HS256,
    AssertionSigner,
    VerificationKeyResolver,
    generate_private_key_pem,
    public_key_pem,
)
from letsauth.core.store_backend import create_redis_client
from letsauth.services.nonce_ledger import (
    InMemoryNonceLedger,
    NonceLedger,
    RedisNonceLedger,
)
from letsauth.services.pending_request_store import (
    InMemoryPendingRequestStore,
    PendingRequestStore,
    RedisPendingRequestStore,
)

logger = structlog.get_logger()

T = TypeVar("T")


@dataclass
class Dependencies:
    """Everything the protocol endpoints need, for one process.

    IdP-only processes have no ledger or key resolver; RP-only processes
    have no pending store, signer, or sink.
    """

    session_secret: str
    pending_store: PendingRequestStore | None = None
    nonce_ledger: NonceLedger | None = None
    signer: AssertionSigner | None = None
    key_resolver: VerificationKeyResolver | None = None
    link_sink: LinkSink | None = None

    def stores(self) -> list[PendingRequestStore | NonceLedger]:
        """The TTL stores this process holds."""
        return [
            store
            for store in (self.pending_store, self.nonce_ledger)
            if store is not None
        ]

    async def close(self) -> None:
        """Release store connections."""
        if self.pending_store is not None:
            await self.pending_store.close()
        if self.nonce_ledger is not None:
            await self.nonce_ledger.close()


def _dev_secret(name: str) -> str:
    """Per-process random secret for development deployments."""
    logger.warning(
        "No secret configured; using an ephemeral development secret",
        setting=name,
    )
    return secrets.token_hex(32)


def _build_signing(
    config: Settings,
) -> tuple[AssertionSigner | None, VerificationKeyResolver | None]:
    """Build the IdP signer and RP key resolver for the configured scheme.

    Outside production, missing key material is replaced by ephemeral keys
    so a single "both" process works out of the box.
    """
    signer = None
    resolver = None

    if config.assertion_algorithm == HS256:
        secret = config.assertion_shared_secret.get_secret_value()
        if not secret:
            secret = _dev_secret("ASSERTION_SHARED_SECRET")
        if config.serves_idp:
            signer = AssertionSigner(HS256, shared_secret=secret)
        if config.serves_rp:
            resolver = VerificationKeyResolver(HS256, shared_secret=secret)
        return signer, resolver

    private_pem = config.idp_private_key_pem.get_secret_value()
    if config.serves_idp:
        if not private_pem:
            logger.warning("No IdP private key configured; using an ephemeral key")
            private_pem = generate_private_key_pem()
        signer = AssertionSigner(
            ES256,
            private_key_pem=private_pem,
            previous_public_keys_pem=config.idp_previous_public_keys_pem,
        )

    if config.serves_rp:
        pinned_pem = config.rp_issuer_public_key_pem
        if not pinned_pem and not config.rp_issuer_jwks_url and private_pem:
            # Same process signs and verifies
            pinned_pem = public_key_pem(private_pem)
        resolver = VerificationKeyResolver(
            ES256,
            public_key_pem=pinned_pem,
            jwks_url=config.rp_issuer_jwks_url,
        )

    return signer, resolver


def _build_link_sink(config: Settings) -> LinkSink:
    if config.link_sink == "resend":
        return ResendLinkSink(
            api_key=config.resend_api_key.get_secret_value(),
            sender=config.email_from,
            lifetime_minutes=config.pending_request_ttl_seconds // 60,
        )
    return LoggingLinkSink()


def build_dependencies(config: Settings) -> Dependencies:
    """Create the process-lifetime collaborators for the configured role."""
    session_secret = config.session_secret.get_secret_value()
    if not session_secret:
        session_secret = _dev_secret("SESSION_SECRET")

    signer, resolver = _build_signing(config)
    deps = Dependencies(
        session_secret=session_secret,
        signer=signer,
        key_resolver=resolver,
    )

    redis_client = None
    if config.store_backend == "redis":
        redis_client = create_redis_client(
            config.redis_url, config.store_timeout_seconds
        )

    if config.serves_idp:
        deps.pending_store = (
            RedisPendingRequestStore(redis_client)
            if redis_client is not None
            else InMemoryPendingRequestStore()
        )
        deps.link_sink = _build_link_sink(config)

    if config.serves_rp:
        deps.nonce_ledger = (
            RedisNonceLedger(redis_client)
            if redis_client is not None
            else InMemoryNonceLedger()
        )

    return deps


# =============================================================================
# Request-scoped accessors
# =============================================================================


def ensure_dependencies(app: FastAPI) -> Dependencies:
    """Return the app's collaborators, building them on first use.

    Normally runs at startup; transports that skip the lifespan (and
    tests that pre-install their own collaborators) are served too.
    """
    if getattr(app.state, "deps", None) is None:
        app.state.deps = build_dependencies(settings)
    return app.state.deps


def get_dependencies(request: Request) -> Dependencies:
    """Collaborators for the application serving this request."""
    return ensure_dependencies(request.app)


def _require(collaborator: T | None, name: str) -> T:
    """Return a collaborator this role is expected to have.

    Raises:
        InternalError: The process was not built for this route's role.
    """
    if collaborator is None:
        logger.error("Collaborator missing for mounted route", collaborator=name)
        raise InternalError()
    return collaborator


def get_pending_store(
    deps: Annotated[Dependencies, Depends(get_dependencies)],
) -> PendingRequestStore:
    return _require(deps.pending_store, "pending_store")


def get_nonce_ledger(
    deps: Annotated[Dependencies, Depends(get_dependencies)],
) -> NonceLedger:
    return _require(deps.nonce_ledger, "nonce_ledger")


def get_signer(
    deps: Annotated[Dependencies, Depends(get_dependencies)],
) -> AssertionSigner:
    return _require(deps.signer, "signer")


def get_key_resolver(
    deps: Annotated[Dependencies, Depends(get_dependencies)],
) -> VerificationKeyResolver:
    return _require(deps.key_resolver, "key_resolver")


def get_link_sink(
    deps: Annotated[Dependencies, Depends(get_dependencies)],
) -> LinkSink:
    return _require(deps.link_sink, "link_sink")


def get_session_secret(
    deps: Annotated[Dependencies, Depends(get_dependencies)],
) -> str:
    return deps.session_secret


PendingStore = Annotated[PendingRequestStore, Depends(get_pending_store)]
Ledger = Annotated[NonceLedger, Depends(get_nonce_ledger)]
Signer = Annotated[AssertionSigner, Depends(get_signer)]
KeyResolver = Annotated[VerificationKeyResolver, Depends(get_key_resolver)]
Sink = Annotated[LinkSink, Depends(get_link_sink)]
SessionSecret = Annotated[str, Depends(get_session_secret)]

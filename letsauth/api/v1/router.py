"""API v1 router aggregator.

Which protocol routers are mounted depends on the configured role.
"""

from fastapi import APIRouter

from letsauth.api.v1 import idp, rp


def build_router(*, serves_idp: bool, serves_rp: bool) -> APIRouter:
    """Assemble the v1 router for this process's role(s)."""
    router = APIRouter()

    if serves_idp:
        router.include_router(idp.router, tags=["idp"])

    if serves_rp:
        router.include_router(rp.router, tags=["rp"])

    return router

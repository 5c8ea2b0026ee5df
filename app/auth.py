"""
FastAPI dependencies that resolve the caller and enforce the admin role.

The session token is minted by the identity provider (see ``SessionSigner``)
and arrives either as ``Authorization: Bearer <token>`` or as the ``session``
cookie. Rejections raise before any storage call is made.
"""
import logging

from fastapi import Depends, Request

from app.errors import Forbidden, Unauthenticated
from app.models import Identity

logger = logging.getLogger(__name__)

SESSION_COOKIE = "session"


def _session_token(request: Request) -> str | None:
    auth = request.headers.get("authorization", "")
    if auth:
        scheme, _, token = auth.partition(" ")
        if scheme.lower() == "bearer" and token.strip():
            return token.strip()
    return request.cookies.get(SESSION_COOKIE) or None


def get_identity(request: Request) -> Identity | None:
    token = _session_token(request)
    if not token:
        return None
    identity = request.app.state.session_signer.resolve(token)
    if identity is None:
        logger.info("Ignoring invalid or expired session token")
    return identity


def require_identity(identity: Identity | None = Depends(get_identity)) -> Identity:
    if identity is None:
        raise Unauthenticated("Not authenticated")
    return identity


def require_admin(request: Request, identity: Identity = Depends(require_identity)) -> Identity:
    admin_role = request.app.state.settings.admin_role
    if identity.role != admin_role:
        logger.warning("User %s with role %s denied admin operation", identity.user_id, identity.role)
        raise Forbidden(f"Forbidden: user does not have '{admin_role}' privileges.")
    return identity


def guard_reads(request: Request, identity: Identity | None = Depends(get_identity)) -> Identity | None:
    """Listing and upload minting are open unless ``require_auth_for_reads`` is set."""
    if request.app.state.settings.require_auth_for_reads and identity is None:
        raise Unauthenticated("Not authenticated")
    return identity

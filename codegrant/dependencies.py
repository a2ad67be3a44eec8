"""Shared FastAPI dependencies for route handlers."""

import logging

from fastapi import Depends, HTTPException, Request, status
from sqlalchemy.ext.asyncio import AsyncSession

from codegrant.config import get_default_provider
from codegrant.db import get_db
from codegrant.exceptions import OAuth2FlowError
from codegrant.services.callback import CallbackOrchestrator
from codegrant.services.cookies import CredentialCookieIssuer
from codegrant.services.csrf import CsrfBinder, RequestSessionStore
from codegrant.services.guard import AuthenticatedVisitor, CredentialGuard
from codegrant.services.reconcile import JsonProfileDecoder, SqlSessionReconciler, SqlUserReconciler
from codegrant.services.registry import ClientRegistry
from codegrant.utils.error_handling import raise_flow_http_error

logger = logging.getLogger(__name__)

# Stateless collaborators shared by every request
csrf_binder = CsrfBinder()
cookie_issuer = CredentialCookieIssuer()


def get_registry(request: Request) -> ClientRegistry:
    """Client registry built during application startup.

    Raises:
        HTTPException: 503 if the application has not finished starting
    """
    registry = getattr(request.app.state, "registry", None)
    if registry is None:
        raise HTTPException(status_code=503, detail="Authentication is not available yet")
    return registry


def get_csrf_binder() -> CsrfBinder:
    return csrf_binder


def get_cookie_issuer() -> CredentialCookieIssuer:
    return cookie_issuer


def get_session_store(request: Request) -> RequestSessionStore:
    """The visitor's signed cookie session as a SessionStore."""
    return RequestSessionStore(request)


async def get_callback_orchestrator(
    provider: str,
    registry: ClientRegistry = Depends(get_registry),
    csrf: CsrfBinder = Depends(get_csrf_binder),
    cookies: CredentialCookieIssuer = Depends(get_cookie_issuer),
    db: AsyncSession = Depends(get_db),
) -> CallbackOrchestrator:
    """Orchestrator wired to SQLAlchemy reconcilers for this request's provider."""
    return CallbackOrchestrator(
        registry=registry,
        csrf=csrf,
        cookies=cookies,
        profile_decoder=JsonProfileDecoder.for_provider(provider),
        users=SqlUserReconciler(db, provider),
        sessions=SqlSessionReconciler(db, provider),
    )


def build_credential_guard(
    provider: str,
    registry: ClientRegistry,
    cookies: CredentialCookieIssuer,
    db: AsyncSession,
) -> CredentialGuard:
    return CredentialGuard(
        registry=registry,
        cookies=cookies,
        profile_decoder=JsonProfileDecoder.for_provider(provider),
        users=SqlUserReconciler(db, provider),
        sessions=SqlSessionReconciler(db, provider),
    )


def resolve_provider(request: Request) -> str:
    """Provider from the route path, or the default provider for unprefixed routes.

    Raises:
        HTTPException: 404 if the route names no provider and none is configured
    """
    provider = request.path_params.get("provider")
    if not provider:
        provider = getattr(request.app.state, "default_provider", None) or get_default_provider()
    if not provider:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="No default authentication provider configured",
        )
    return provider


async def require_visitor(
    request: Request,
    provider: str = Depends(resolve_provider),
    registry: ClientRegistry = Depends(get_registry),
    cookies: CredentialCookieIssuer = Depends(get_cookie_issuer),
    db: AsyncSession = Depends(get_db),
) -> AuthenticatedVisitor:
    """Dependency for routes that require a valid credential cookie.

    Usage:
        @router.get("/me")
        async def me(visitor: AuthenticatedVisitor = Depends(require_visitor)):
            ...

    Raises:
        HTTPException: 401 for a missing or invalid credential, 404 for an
            unknown provider
    """
    guard = build_credential_guard(provider, registry, cookies, db)
    try:
        return await guard.authenticate(request, provider)
    except OAuth2FlowError as e:
        raise_flow_http_error(logger, e, provider)

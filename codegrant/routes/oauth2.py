"""OAuth2 authorization code flow routes.

Provides endpoints for the visitor-facing flow:
- GET /oauth2/providers - List configured providers (public)
- GET /oauth2/{provider}/authorize - Initiate flow (public, redirects to provider)
- GET /oauth2/{provider}/callback - Handle provider callback (public)
- GET /oauth2/{provider}/protected - Resource gated by the credential cookie
- GET /oauth2/protected - Same, for the default provider
"""

import logging

from fastapi import APIRouter, Depends, Request, status
from fastapi.responses import RedirectResponse

from codegrant.dependencies import (
    get_callback_orchestrator,
    get_registry,
    get_session_store,
    require_visitor,
)
from codegrant.exceptions import OAuth2FlowError
from codegrant.schemas.oauth2 import ProviderListResponse, VisitorResponse
from codegrant.services.callback import CallbackOrchestrator
from codegrant.services.csrf import RequestSessionStore
from codegrant.services.guard import AuthenticatedVisitor
from codegrant.services.registry import ClientRegistry
from codegrant.utils.error_handling import raise_flow_http_error

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/oauth2", tags=["OAuth2 Authentication"])


@router.get("/providers", response_model=ProviderListResponse)
async def list_providers(registry: ClientRegistry = Depends(get_registry)):
    """List configured provider names (public)."""
    return {"providers": registry.names()}


@router.get("/protected", response_model=VisitorResponse)
async def protected_default(visitor: AuthenticatedVisitor = Depends(require_visitor)):
    """Protected resource for the default provider."""
    return _visitor_response(visitor)


@router.get("/{provider}/authorize")
async def authorize(
    provider: str,
    session: RequestSessionStore = Depends(get_session_store),
    orchestrator: CallbackOrchestrator = Depends(get_callback_orchestrator),
):
    """Initiate the authorization code flow (public).

    Binds a fresh CSRF token to the visitor's session and redirects to the
    provider's authorization endpoint.
    """
    try:
        auth_url = orchestrator.start(provider, session)
    except OAuth2FlowError as e:
        raise_flow_http_error(logger, e, provider)

    return RedirectResponse(url=auth_url, status_code=status.HTTP_302_FOUND)


@router.get("/{provider}/callback")
async def callback(
    provider: str,
    request: Request,
    session: RequestSessionStore = Depends(get_session_store),
    orchestrator: CallbackOrchestrator = Depends(get_callback_orchestrator),
):
    """Handle the provider callback (public).

    Query Parameters:
        code: Authorization code from provider
        state: State parameter for CSRF protection

    Returns:
        Redirect to the protected resource with the credential cookie set
    """
    try:
        result = await orchestrator.handle(provider, session, request.query_params)
    except OAuth2FlowError as e:
        raise_flow_http_error(logger, e, provider)

    response = RedirectResponse(url=result.redirect_url, status_code=status.HTTP_302_FOUND)
    result.cookie.apply(response)
    return response


@router.get("/{provider}/protected", response_model=VisitorResponse)
async def protected(visitor: AuthenticatedVisitor = Depends(require_visitor)):
    """Protected resource, reachable only with a valid credential cookie."""
    return _visitor_response(visitor)


def _visitor_response(visitor: AuthenticatedVisitor) -> VisitorResponse:
    user = visitor.user
    expires_at = visitor.session.expires_at
    return VisitorResponse(
        provider=visitor.provider,
        user_id=user.id,
        subject=user.subject,
        email=user.email,
        name=user.name,
        session_expires_at=expires_at.isoformat() if expires_at else None,
    )

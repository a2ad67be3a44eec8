"""OAuth2 flow schemas: provider configuration, callback input, tokens and profiles."""

from typing import Any, Dict, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

DEFAULT_PROTECTED_URL = "/oauth2/protected"
DEFAULT_COOKIE_NAME = "oauth2_credential"
DEFAULT_COOKIE_MAX_AGE = 600  # 10 minutes
MAX_TOKEN_LIFETIME = 10 * 365 * 24 * 3600  # 10 years


class CookieConfig(BaseModel):
    """Credential cookie policy for one provider."""

    model_config = ConfigDict(frozen=True)

    protected_url: Optional[str] = None
    name: str = Field(DEFAULT_COOKIE_NAME, min_length=1, pattern=r"^[A-Za-z0-9_-]+$")
    domain: Optional[str] = None
    path: str = "/"
    max_age: int = Field(DEFAULT_COOKIE_MAX_AGE, gt=0, le=3600)
    secure: bool = True
    http_only: bool = True
    same_site: str = "lax"

    @field_validator("same_site")
    @classmethod
    def validate_same_site(cls, v: str) -> str:
        """Validate SameSite attribute value."""
        v = v.lower()
        if v not in ("lax", "strict", "none"):
            raise ValueError("same_site must be one of: lax, strict, none")
        return v

    def redirect_target(self) -> str:
        """Where the visitor lands after a completed callback."""
        return self.protected_url or DEFAULT_PROTECTED_URL


class ProviderConfig(BaseModel):
    """Immutable configuration of one OAuth2 provider client."""

    model_config = ConfigDict(frozen=True)

    name: str = Field(..., min_length=1, pattern=r"^[a-z0-9_-]+$")
    client_id: str = Field(..., min_length=1)
    client_secret: str = Field(..., min_length=1, repr=False)
    authorize_url: str
    token_url: str
    profile_url: str
    redirect_uri: str = Field(..., min_length=1)
    scopes: Tuple[str, ...] = ()
    extra_authorize_params: Tuple[Tuple[str, str], ...] = ()
    timeout: float = Field(10.0, gt=0)
    cookie: CookieConfig = CookieConfig()


class CallbackParams(BaseModel):
    """Query parameters of the provider redirect (untrusted input)."""

    code: Optional[str] = Field(None, max_length=2048)
    state: Optional[str] = Field(None, max_length=2048)
    error: Optional[str] = Field(None, max_length=256)
    error_description: Optional[str] = Field(None, max_length=1024)


class TokenResponse(BaseModel):
    """Token endpoint response.

    `raw` keeps the provider payload exactly as received; it is the
    credential cookie payload, so a cookie decodes back to an equal object.
    """

    model_config = ConfigDict(frozen=True)

    access_token: str = Field(..., min_length=1)
    token_type: str = "bearer"
    refresh_token: Optional[str] = None
    expires_in: Optional[int] = Field(None, ge=0, le=MAX_TOKEN_LIFETIME)
    scope: Optional[str] = None
    raw: Dict[str, Any] = Field(default_factory=dict)

    @classmethod
    def from_payload(cls, payload: Dict[str, Any]) -> "TokenResponse":
        """Build from a token endpoint JSON body.

        Raises:
            pydantic.ValidationError: If the payload lacks a usable access token
                or carries an out-of-range lifetime
        """
        expires_in = payload.get("expires_in")
        if isinstance(expires_in, str) and expires_in.isdigit():
            expires_in = int(expires_in)
        scope = payload.get("scope")
        if isinstance(scope, list):
            scope = " ".join(str(s) for s in scope)
        return cls(
            access_token=payload.get("access_token"),
            token_type=payload.get("token_type") or "bearer",
            refresh_token=payload.get("refresh_token"),
            expires_in=expires_in,
            scope=scope,
            raw=payload,
        )

    def __repr__(self) -> str:
        return f"<TokenResponse(token_type={self.token_type}, expires_in={self.expires_in}, scope={self.scope})>"

    __str__ = __repr__


class ProviderProfile(BaseModel):
    """Remote user profile as returned by a provider's profile endpoint.

    Providers add their own fields; unknown fields are kept.
    """

    model_config = ConfigDict(extra="allow")

    sub: str = Field(..., min_length=1)
    email: Optional[str] = None
    name: Optional[str] = None

    @field_validator("sub", mode="before")
    @classmethod
    def coerce_subject(cls, v: Any) -> Any:
        """Numeric provider ids (GitHub) are stored as strings."""
        if isinstance(v, int) and not isinstance(v, bool):
            return str(v)
        return v

    @property
    def identity(self) -> str:
        """Identity-bearing field, stable across sign-ins."""
        return self.sub


class GoogleProfile(ProviderProfile):
    """Google OpenID Connect userinfo payload."""

    email_verified: Optional[bool] = None
    given_name: Optional[str] = None
    family_name: Optional[str] = None
    picture: Optional[str] = None
    locale: Optional[str] = None


class GitHubProfile(ProviderProfile):
    """GitHub `/user` payload (numeric `id` mapped to `sub`)."""

    login: Optional[str] = None
    avatar_url: Optional[str] = None

    @model_validator(mode="before")
    @classmethod
    def map_id_to_subject(cls, data: Any) -> Any:
        if isinstance(data, dict) and "sub" not in data and "id" in data:
            data = {**data, "sub": data["id"]}
        return data


class VisitorResponse(BaseModel):
    """Body returned by the protected resource."""

    message: str = "You are protected!"
    provider: str
    user_id: int
    subject: str
    email: Optional[str] = None
    name: Optional[str] = None
    session_expires_at: Optional[str] = None  # ISO timestamp string


class ProviderListResponse(BaseModel):
    """Configured provider names."""

    providers: list[str]

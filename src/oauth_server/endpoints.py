"""OAuth HTTP endpoints for the Sonos account link.

- GET  /sonos/oauth/authorize  interactive sign-in page
- POST /sonos/oauth/authorize  credential check, redirect with a code
- POST /sonos/oauth/token      authorization_code and refresh_token grants
"""

from html import escape
from typing import Any, Optional
from urllib.parse import parse_qsl, urlencode, urlsplit, urlunsplit

from fastapi import APIRouter, Depends, Form, Query, Request, status
from fastapi.responses import HTMLResponse, JSONResponse, RedirectResponse

from shared.logging import get_logger
from shared.models import AccessTokenResult, RefreshTokenResult, TokenResponse
from oauth_server.tokens import TokenService
from oauth_server.users import UserDirectory

logger = get_logger(__name__)

router = APIRouter(prefix="/sonos/oauth", tags=["OAuth"])


class OAuthError(Exception):
    """OAuth failure rendered as a JSON error object."""

    def __init__(self, status_code: int, error: str, description: str) -> None:
        super().__init__(description)
        self.status_code = status_code
        self.error = error
        self.description = description


async def oauth_error_handler(request: Request, exc: OAuthError) -> JSONResponse:
    return JSONResponse(
        status_code=exc.status_code,
        content={"error": exc.error, "error_description": exc.description},
    )


def get_token_service(request: Request) -> TokenService:
    return request.app.state.token_service


def get_user_directory(request: Request) -> UserDirectory:
    return request.app.state.user_directory


def get_default_scope(request: Request) -> str:
    return request.app.state.settings.oauth.default_scope


def _is_blank(value: Optional[str]) -> bool:
    return value is None or not value.strip()


def _require_authorize_params(response_type: str, client_id: str, redirect_uri: str) -> None:
    if (response_type or "").lower() != "code":
        raise OAuthError(
            status.HTTP_400_BAD_REQUEST,
            "unsupported_response_type",
            "response_type must be 'code'."
        )

    if _is_blank(client_id) or _is_blank(redirect_uri):
        raise OAuthError(
            status.HTTP_400_BAD_REQUEST,
            "invalid_request",
            "client_id and redirect_uri are required."
        )


def build_redirect_uri(redirect_uri: str, code: str, state: Optional[str] = None) -> str:
    """Append ``code`` (and ``state``) to the redirect URI, keeping its existing query."""
    parts = urlsplit(redirect_uri)
    query = parse_qsl(parts.query, keep_blank_values=True)
    query.append(("code", code))
    if not _is_blank(state):
        query.append(("state", state))
    return urlunsplit(parts._replace(query=urlencode(query)))


LOGIN_PAGE = """<!DOCTYPE html>
<html>
<head>
    <meta charset="utf-8" />
    <title>{service_name} - Sonos Authorization</title>
    <style>
        body {{ font-family: Arial, sans-serif; max-width: 500px; margin: 50px auto; padding: 20px; }}
        input, button {{ width: 100%; padding: 10px; margin: 10px 0; box-sizing: border-box; }}
    </style>
</head>
<body>
    <h1>{service_name} - Sonos Authorization</h1>
    <p>Sign in to link Sonos with your {service_name} account.</p>
    <form method="post" action="/sonos/oauth/authorize">
        <input type="hidden" name="client_id" value="{client_id}" />
        <input type="hidden" name="redirect_uri" value="{redirect_uri}" />
        <input type="hidden" name="state" value="{state}" />
        <input type="hidden" name="scope" value="{scope}" />
        <input type="hidden" name="response_type" value="code" />
        <input type="hidden" name="code_challenge" value="{code_challenge}" />
        <input type="hidden" name="code_challenge_method" value="{code_challenge_method}" />
        <input type="text" name="username" placeholder="Username" required />
        <input type="password" name="password" placeholder="Password" required />
        <button type="submit">Authorize</button>
    </form>
</body>
</html>
"""


@router.get("/authorize", response_class=HTMLResponse)
async def authorize_page(
    request: Request,
    response_type: str = Query(default="code"),
    client_id: str = Query(default=""),
    redirect_uri: str = Query(default=""),
    scope: Optional[str] = Query(default=None),
    state: Optional[str] = Query(default=None),
    code_challenge: Optional[str] = Query(default=None),
    code_challenge_method: Optional[str] = Query(default=None),
    default_scope: str = Depends(get_default_scope),
):
    """Render the sign-in form; all OAuth parameters travel as hidden fields."""
    _require_authorize_params(response_type, client_id, redirect_uri)

    html = LOGIN_PAGE.format(
        service_name=escape(request.app.state.settings.bridge.service_name),
        client_id=escape(client_id),
        redirect_uri=escape(redirect_uri),
        state=escape(state or ""),
        scope=escape(scope or default_scope),
        code_challenge=escape(code_challenge or ""),
        code_challenge_method=escape(code_challenge_method or ""),
    )
    return HTMLResponse(content=html)


@router.post("/authorize")
async def authorize_submit(
    client_id: str = Form(default=""),
    redirect_uri: str = Form(default=""),
    username: str = Form(default=""),
    password: str = Form(default=""),
    response_type: str = Form(default="code"),
    scope: Optional[str] = Form(default=None),
    state: Optional[str] = Form(default=None),
    code_challenge: Optional[str] = Form(default=None),
    code_challenge_method: Optional[str] = Form(default=None),
    tokens: TokenService = Depends(get_token_service),
    users: UserDirectory = Depends(get_user_directory),
):
    """
    Check the submitted credentials and redirect back with a code.

    Unknown users and wrong passwords are 401; missing parameters are 400.
    """
    _require_authorize_params(response_type, client_id, redirect_uri)

    user = users.get_user_by_name(username)
    if user is None:
        logger.warning("OAuth authorization failed: unknown user", username=username)
        raise OAuthError(
            status.HTTP_401_UNAUTHORIZED,
            "access_denied",
            "Invalid username or password."
        )

    if _is_blank(password):
        raise OAuthError(status.HTTP_400_BAD_REQUEST, "invalid_request", "Password is required.")

    if not users.verify_password(user, password):
        logger.warning("OAuth authorization failed: bad password", username=username)
        raise OAuthError(
            status.HTTP_401_UNAUTHORIZED,
            "access_denied",
            "Invalid username or password."
        )

    code = tokens.create_authorization_code(
        user.user_id,
        user.username,
        client_id,
        redirect_uri,
        code_challenge,
        code_challenge_method,
        scope,
    )

    return RedirectResponse(
        build_redirect_uri(redirect_uri, code, state),
        status_code=status.HTTP_302_FOUND,
    )


async def _read_token_request(request: Request) -> dict[str, Any]:
    content_type = request.headers.get("content-type", "")
    if content_type.startswith("application/json"):
        try:
            data = await request.json()
        except ValueError:
            raise OAuthError(status.HTTP_400_BAD_REQUEST, "invalid_request", "Malformed JSON body.")
        if not isinstance(data, dict):
            raise OAuthError(status.HTTP_400_BAD_REQUEST, "invalid_request", "Malformed JSON body.")
        return {key: str(value) for key, value in data.items() if value is not None}

    form = await request.form()
    return {key: value for key, value in form.items() if isinstance(value, str)}


def _token_response(access: AccessTokenResult, refresh: RefreshTokenResult) -> dict[str, Any]:
    return TokenResponse(
        access_token=access.token,
        expires_in=access.expires_in,
        refresh_token=refresh.token,
        scope=access.scope,
    ).model_dump()


@router.post("/token")
async def token(
    request: Request,
    tokens: TokenService = Depends(get_token_service),
    default_scope: str = Depends(get_default_scope),
):
    """Token endpoint for the authorization_code and refresh_token grants."""
    data = await _read_token_request(request)
    grant_type = str(data.get("grant_type") or "").lower()
    scope = data.get("scope") or default_scope

    if grant_type == "authorization_code":
        code = data.get("code")
        client_id = data.get("client_id")
        redirect_uri = data.get("redirect_uri")
        if _is_blank(code) or _is_blank(client_id) or _is_blank(redirect_uri):
            raise OAuthError(
                status.HTTP_400_BAD_REQUEST,
                "invalid_request",
                "code, client_id, and redirect_uri are required."
            )

        auth_code = tokens.try_redeem_code(code, client_id, redirect_uri, data.get("code_verifier"))
        if auth_code is None:
            raise OAuthError(
                status.HTTP_401_UNAUTHORIZED,
                "invalid_grant",
                "Authorization code is invalid or expired."
            )

        # The scope consented to at sign-in wins over the token request
        scope = auth_code.scope or scope
        access = tokens.issue_access_token(auth_code.user_id, auth_code.username, scope)
        refresh = tokens.issue_refresh_token(auth_code.user_id, auth_code.username, scope)
        logger.info("Tokens issued", user=auth_code.username, grant_type=grant_type)
        return _token_response(access, refresh)

    if grant_type == "refresh_token":
        refresh_token = data.get("refresh_token")
        if _is_blank(refresh_token):
            raise OAuthError(
                status.HTTP_400_BAD_REQUEST,
                "invalid_request",
                "refresh_token is required."
            )

        exchanged = tokens.try_exchange_refresh_token(refresh_token)
        if exchanged is None:
            raise OAuthError(
                status.HTTP_401_UNAUTHORIZED,
                "invalid_grant",
                "Refresh token is invalid or expired."
            )

        access, refresh = exchanged
        return _token_response(access, refresh)

    raise OAuthError(
        status.HTTP_400_BAD_REQUEST,
        "unsupported_grant_type",
        "Supported grant types: authorization_code, refresh_token."
    )

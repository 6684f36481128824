"""OAuth discovery metadata.

- /.well-known/oauth-protected-resource (RFC 9728)
- /.well-known/oauth-authorization-server (RFC 8414)

The Carbon Voice API is the authorization server; this gateway is only a
protected resource.
"""

from starlette.requests import Request
from starlette.responses import JSONResponse, Response
from starlette.routing import Route

from .. import SERVICE_NAME

WELL_KNOWN_CORS_HEADERS = {
    "Access-Control-Allow-Origin": "*",
    "Access-Control-Allow-Headers": "Content-Type, Authorization",
    "Access-Control-Allow-Methods": "GET, POST, PUT, DELETE, OPTIONS",
    "Access-Control-Allow-Credentials": "true",
    "Access-Control-Expose-Headers": "WWW-Authenticate",
}

PROTECTED_RESOURCE_PATH = "/.well-known/oauth-protected-resource"


def resource_base_url(request: Request) -> str:
    """Public base URL of this server, honouring proxy headers."""
    scheme = request.headers.get("x-forwarded-proto") or request.url.scheme
    host = request.headers.get("x-forwarded-host") or request.headers.get("host")
    if not host:
        host = f"localhost:{request.app.state.settings.port}"
    return f"{scheme}://{host}"


async def oauth_protected_resource(request: Request) -> Response:
    if request.method == "OPTIONS":
        return Response(status_code=204, headers=WELL_KNOWN_CORS_HEADERS)

    settings = request.app.state.settings
    return JSONResponse(
        {
            "resource": resource_base_url(request),
            "authorization_servers": [settings.carbon_voice_base_url],
            "scopes_supported": settings.required_scopes,
            "bearer_methods_supported": ["header"],
            "resource_name": SERVICE_NAME,
        },
        headers=WELL_KNOWN_CORS_HEADERS,
    )


async def oauth_authorization_server(request: Request) -> Response:
    if request.method == "OPTIONS":
        return Response(status_code=204, headers=WELL_KNOWN_CORS_HEADERS)

    settings = request.app.state.settings
    issuer = settings.carbon_voice_base_url
    return JSONResponse(
        {
            "issuer": issuer,
            "authorization_endpoint": f"{issuer}/oauth/authorize",
            "token_endpoint": f"{issuer}/oauth/token",
            "registration_endpoint": f"{issuer}/oauth/register",
            "userinfo_endpoint": f"{issuer}/oauth/userinfo",
            "response_types_supported": ["code", "token"],
            "response_modes_supported": ["query"],
            "grant_types_supported": ["authorization_code", "refresh_token"],
            "scopes_supported": settings.required_scopes,
            "token_endpoint_auth_methods_supported": ["client_secret_basic", "none"],
            "code_challenge_methods_supported": ["S256"],
        },
        headers=WELL_KNOWN_CORS_HEADERS,
    )


well_known_routes = [
    Route(PROTECTED_RESOURCE_PATH, oauth_protected_resource, methods=["GET", "OPTIONS"]),
    Route(
        "/.well-known/oauth-authorization-server",
        oauth_authorization_server,
        methods=["GET", "OPTIONS"],
    ),
]

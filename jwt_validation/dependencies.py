"""
FastAPI integration: bearer-token dependency producing an AuthContext.
"""

from dataclasses import dataclass
from typing import Any, Dict, List

from fastapi import Request
from fastapi.security import HTTPBearer

from shared.errors import MalformedTokenError
from shared.logging import get_logger, set_user_context
from .parser import extract_roles, extract_tenant_id, extract_user_id
from .verifier import TokenVerifier


@dataclass(frozen=True)
class AuthContext:
    """Authenticated caller derived from a verified token."""

    user_id: str
    tenant_id: str
    roles: List[str]
    claims: Dict[str, Any]
    token: str


class BearerAuth:
    """Dependency that verifies ``Authorization: Bearer <token>``.

    Usage::

        auth = BearerAuth(verifier)

        @app.get("/orders")
        async def orders(ctx: AuthContext = Depends(auth)):
            ...

    Failures raise the typed verification errors; register
    ``shared.errors.install_exception_handlers`` to render them.
    """

    def __init__(self, verifier: TokenVerifier):
        self.verifier = verifier
        self.security = HTTPBearer(auto_error=False)
        self.logger = get_logger("auth.dependency")

    async def __call__(self, request: Request) -> AuthContext:
        credentials = await self.security(request)
        if credentials is None or not credentials.credentials:
            raise MalformedTokenError("Missing or invalid Authorization header")

        token = credentials.credentials
        claims = await self.verifier.verify(token)
        context = AuthContext(
            user_id=extract_user_id(claims),
            tenant_id=extract_tenant_id(claims),
            roles=extract_roles(claims),
            claims=claims,
            token=token,
        )

        set_user_context(user_id=context.user_id, tenant_id=context.tenant_id)
        request.state.auth_context = context
        self.logger.info("Request authenticated", user_id=context.user_id, tenant_id=context.tenant_id)
        return context

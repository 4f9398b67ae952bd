"""
JWT parsing and claim extraction.

Everything here is pure: no I/O, no key material.
"""

import binascii
import hashlib
import json
from dataclasses import dataclass
from typing import Any, Dict, List, Mapping, Optional

from jose.utils import base64url_decode

from shared.errors import (
    InvalidSignatureError,
    MalformedClaimsError,
    MalformedTokenError,
    MissingTenantIdError,
    MissingUserIdError,
)

TOKEN_ID_CLAIM = "jti"
USER_ID_CLAIM = "userId"
TENANT_ID_CLAIM = "tenantId"
ROLES_CLAIM = "roles"


@dataclass(frozen=True)
class TokenHeader:
    key_id: Optional[str]
    algorithm: Optional[str]
    raw: Mapping[str, Any]


@dataclass(frozen=True)
class ParsedToken:
    """A structurally valid, not yet verified, three-part token."""

    raw: str
    header: TokenHeader
    signing_input: bytes
    payload_segment: bytes
    signature_segment: bytes

    def signature(self) -> bytes:
        try:
            return base64url_decode(self.signature_segment)
        except (binascii.Error, ValueError) as e:
            raise InvalidSignatureError("JWT signature is not valid base64url") from e

    def claims(self) -> Dict[str, Any]:
        return decode_claims(self.payload_segment)


def _decode_json_segment(segment: bytes) -> Any:
    return json.loads(base64url_decode(segment).decode("utf-8"))


def strip_bearer(token: Optional[str]) -> Optional[str]:
    if token and token.startswith("Bearer "):
        return token[7:].strip()
    return token


def parse_token(token: Optional[str]) -> ParsedToken:
    """Split a compact JWS and decode its header. Raises MalformedTokenError."""
    if token is None or not token.strip():
        raise MalformedTokenError("Token is required")

    token = token.strip()
    parts = token.encode("utf-8").split(b".")
    if len(parts) != 3 or not parts[0] or not parts[1]:
        raise MalformedTokenError("Invalid JWT token format")

    header_segment, payload_segment, signature_segment = parts
    try:
        header = _decode_json_segment(header_segment)
    except (binascii.Error, ValueError, UnicodeDecodeError) as e:
        raise MalformedTokenError("Invalid JWT header") from e
    if not isinstance(header, dict):
        raise MalformedTokenError("Invalid JWT header")

    key_id = header.get("kid")
    algorithm = header.get("alg")
    return ParsedToken(
        raw=token,
        header=TokenHeader(
            key_id=key_id if isinstance(key_id, str) and key_id else None,
            algorithm=algorithm if isinstance(algorithm, str) else None,
            raw=header,
        ),
        signing_input=header_segment + b"." + payload_segment,
        payload_segment=payload_segment,
        signature_segment=signature_segment,
    )


def decode_claims(payload_segment: bytes) -> Dict[str, Any]:
    """Decode the claims payload. Raises MalformedClaimsError."""
    try:
        claims = _decode_json_segment(payload_segment)
    except (binascii.Error, ValueError, UnicodeDecodeError) as e:
        raise MalformedClaimsError() from e
    if not isinstance(claims, dict):
        raise MalformedClaimsError("JWT claims must be a JSON object")
    return claims


def extract_token_id(token: ParsedToken) -> str:
    """Return the ``jti`` claim, or a SHA-256 of the raw token when there is none."""
    try:
        token_id = token.claims().get(TOKEN_ID_CLAIM)
    except MalformedClaimsError:
        token_id = None
    if isinstance(token_id, str) and token_id.strip():
        return token_id
    return hashlib.sha256(token.raw.encode("utf-8")).hexdigest()


def extract_user_id(claims: Mapping[str, Any]) -> str:
    """User ID from the ``userId`` claim, falling back to ``sub``."""
    user_id = claims.get(USER_ID_CLAIM)
    if user_id is None:
        user_id = claims.get("sub")
    if user_id is None or not str(user_id).strip():
        raise MissingUserIdError()
    return str(user_id)


def extract_tenant_id(claims: Mapping[str, Any]) -> str:
    tenant_id = claims.get(TENANT_ID_CLAIM)
    if tenant_id is None:
        raise MissingTenantIdError()
    return str(tenant_id)


def extract_roles(claims: Mapping[str, Any]) -> List[str]:
    """Roles in token order; empty when the claim is absent or not a list of strings."""
    roles = claims.get(ROLES_CLAIM)
    if not isinstance(roles, list) or not all(isinstance(role, str) for role in roles):
        return []
    return list(roles)

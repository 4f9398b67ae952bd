"""
Bearer token verification against a rotating JWKS with Redis-backed revocation.
"""

from .jwks import KeyFetcher, decode_key_set, extract_key_set
from .keys import KeyRing, KeySetSnapshot, VerificationKey
from .parser import (
    ParsedToken,
    extract_roles,
    extract_tenant_id,
    extract_token_id,
    extract_user_id,
    parse_token,
)
from .revocation import RevocationChecker
from .verifier import BlockingTokenVerifier, TokenVerificationResponse, TokenVerifier

__all__ = [
    "BlockingTokenVerifier",
    "KeyFetcher",
    "KeyRing",
    "KeySetSnapshot",
    "ParsedToken",
    "RevocationChecker",
    "TokenVerificationResponse",
    "TokenVerifier",
    "VerificationKey",
    "decode_key_set",
    "extract_key_set",
    "extract_roles",
    "extract_tenant_id",
    "extract_token_id",
    "extract_user_id",
    "parse_token",
]

"""
Verification keys and the key ring they are served from.
"""

import itertools
import time
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any, Dict, Iterable, List, Mapping, Optional

from jose import jwk
from jose.backends.base import Key
from jose.exceptions import JOSEError

from shared.logging import get_logger

logger = get_logger("auth.keys")

# Asymmetric signing key types and the algorithms each may verify
SIGNING_ALGORITHMS = {
    "RSA": ("RS256", "RS384", "RS512"),
    "EC": ("ES256", "ES384", "ES512"),
}
DEFAULT_ALGORITHMS = {
    "RSA": "RS256",
    "EC": "ES256",
}
EC_CURVE_ALGORITHMS = {
    "P-256": "ES256",
    "P-384": "ES384",
    "P-521": "ES512",
}


@dataclass(frozen=True)
class VerificationKey:
    """A trusted public key identified by ``kid``."""

    key_id: str
    algorithm: str
    key: Key
    jwk: Mapping[str, Any] = field(repr=False)

    @property
    def key_type(self) -> str:
        return self.jwk["kty"]

    def accepts(self, algorithm: Optional[str]) -> bool:
        """Whether a token declaring ``algorithm`` may be verified with this key."""
        if algorithm is None:
            return False
        if "alg" in self.jwk:
            return algorithm == self.jwk["alg"]
        return algorithm in SIGNING_ALGORITHMS.get(self.key_type, ())

    def verify(self, signing_input: bytes, signature: bytes, algorithm: str) -> bool:
        if not self.accepts(algorithm):
            return False
        key = self.key
        if algorithm != self.algorithm:
            key = jwk.construct(dict(self.jwk), algorithm)
        return key.verify(signing_input, signature)

    @classmethod
    def from_jwk(cls, data: Mapping[str, Any]) -> Optional["VerificationKey"]:
        """Build a key from a JWK, or None for keys that cannot verify signatures."""
        key_type = data.get("kty")
        key_id = data.get("kid")
        if key_type not in SIGNING_ALGORITHMS:
            logger.debug("Skipping non-asymmetric JWK", kid=key_id, kty=key_type)
            return None
        if data.get("use", "sig") != "sig":
            logger.debug("Skipping JWK not meant for signatures", kid=key_id, use=data.get("use"))
            return None
        if not isinstance(key_id, str) or not key_id:
            logger.warning("Skipping JWK without key ID", kty=key_type)
            return None

        algorithm = data.get("alg")
        if algorithm is None:
            if key_type == "EC":
                algorithm = EC_CURVE_ALGORITHMS.get(data.get("crv"), DEFAULT_ALGORITHMS["EC"])
            else:
                algorithm = DEFAULT_ALGORITHMS[key_type]
        if algorithm not in SIGNING_ALGORITHMS[key_type]:
            logger.warning("Skipping JWK with unsupported algorithm", kid=key_id, alg=algorithm)
            return None

        try:
            key = jwk.construct(dict(data), algorithm)
        except (JOSEError, ValueError, TypeError) as e:
            logger.warning("Skipping JWK that failed to load", kid=key_id, error=str(e))
            return None

        return cls(key_id=key_id, algorithm=algorithm, key=key, jwk=MappingProxyType(dict(data)))


@dataclass(frozen=True)
class KeySetSnapshot:
    """One complete generation of trusted keys."""

    keys: Mapping[str, VerificationKey]
    fetched_at: float
    generation: int


_EMPTY = KeySetSnapshot(keys=MappingProxyType({}), fetched_at=0.0, generation=0)


class KeyRing:
    """Currently trusted verification keys, indexed by key ID.

    Readers go through an immutable snapshot; ``replace`` assembles the next
    snapshot completely before swapping the reference, so a reader sees
    either the old generation or the new one, never a mix.
    """

    def __init__(self):
        self._snapshot = _EMPTY
        self._generations = itertools.count(1)

    @property
    def snapshot(self) -> KeySetSnapshot:
        return self._snapshot

    @property
    def fetched_at(self) -> float:
        return self._snapshot.fetched_at

    def lookup(self, key_id: str) -> Optional[VerificationKey]:
        """Return the key for ``key_id``; never blocks and never fetches."""
        return self._snapshot.keys.get(key_id)

    def replace(self, keys: Iterable[VerificationKey]) -> KeySetSnapshot:
        """Atomically replace the whole ring."""
        mapping: Dict[str, VerificationKey] = {}
        for key in keys:
            mapping[key.key_id] = key
        snapshot = KeySetSnapshot(
            keys=MappingProxyType(mapping),
            fetched_at=time.time(),
            generation=next(self._generations),
        )
        self._snapshot = snapshot
        return snapshot

    def key_ids(self) -> List[str]:
        return sorted(self._snapshot.keys)

    def __len__(self) -> int:
        return len(self._snapshot.keys)

    def __contains__(self, key_id: object) -> bool:
        return key_id in self._snapshot.keys

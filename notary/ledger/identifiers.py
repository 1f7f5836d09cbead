"""Content digests and off-chain identifier derivation.

Profile, registry and entry identifiers are blake2-256 digests of their inputs,
SS58-encoded with a per-kind ident so that each kind has a distinct prefix.
Anything that can be observed on chain can therefore also be recomputed from
the same inputs.
"""

from __future__ import annotations

import hashlib
import json
from collections.abc import Sequence
from typing import Any

from scalecodec.utils.ss58 import ss58_decode, ss58_encode

from notary.core.errors import IdentifierResolutionFailure

PROFILE_IDENT = 7101
REGISTRY_IDENT = 8902
ENTRY_IDENT = 11992


def blake2_256(data: bytes) -> bytes:
    return hashlib.blake2b(data, digest_size=32).digest()


def hash_value(value: str) -> str:
    return "0x" + blake2_256(value.encode("utf-8")).hex()


def digest_of(raw: str) -> str:
    return hash_value(raw)


def digest_of_blob(blob: dict[str, Any]) -> str:
    return digest_of(serialize_blob(blob))


def serialize_blob(blob: dict[str, Any]) -> str:
    return json.dumps(blob, separators=(",", ":"), sort_keys=True, default=str)


def compute_profile_id(digest: str, address: str) -> str:
    return _derive(PROFILE_IDENT, digest, address)


def compute_registry_id(digest: str, address: str) -> str:
    return _derive(REGISTRY_IDENT, digest, address)


def compute_entry_id(
    digest: str,
    registry_id: str | None,
    profile_id: str | None = None,
    *,
    address: str | None = None,
) -> str:
    """Derive an entry id, trying each tier in order until one has all of its inputs.

    Without a profile the issuer-address tier falls back to registry derivation over
    the entry digest, so such ids carry the registry prefix.
    """
    tiers: Sequence[tuple[int, tuple[str | None, ...]]] = (
        (ENTRY_IDENT, (digest, registry_id, profile_id)),
        (REGISTRY_IDENT, (digest, address)),
    )
    for ident, parts in tiers:
        if all(parts):
            return _derive(ident, *parts)  # type: ignore[arg-type]
    raise IdentifierResolutionFailure("entry id requires a registry and profile id or an issuer address")


def profile_digest(hashed_attributes: Sequence[tuple[str, str]]) -> str:
    return digest_of(serialize_blob({key: value for key, value in hashed_attributes}))


def _derive(ident: int, *parts: str) -> str:
    return ss58_encode(blake2_256(b"".join(_part_bytes(part) for part in parts)), ss58_format=ident)


def _part_bytes(part: str) -> bytes:
    if part.startswith("0x"):
        return bytes.fromhex(part[2:])
    try:
        return bytes.fromhex(ss58_decode(part))
    except ValueError:
        return part.encode("utf-8")

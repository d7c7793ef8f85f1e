"""
Canonical JSON encoding for signed payware requests.

The payware API authenticates a request body by comparing a digest carried in
the JWT header against a digest of the bytes it receives. Both sides therefore
have to agree on one exact string per body. This module produces that string:
keys sorted at every depth, array order untouched, no whitespace.

Example:
    >>> canonical_json({"trData": {"currency": "EUR", "amount": "10.00"}})
    '{"trData":{"amount":"10.00","currency":"EUR"}}'
"""

import base64
import hashlib
import json
import math
from enum import Enum
from typing import Any, Mapping, Optional

from payware_mcp.errors import SerializationError

# Above this magnitude JavaScript switches integral floats to exponent form.
_MAX_INTEGRAL_FLOAT = 1e21


class HashProfile(str, Enum):
    """Digest algorithm used for the content hash, and the header field that carries it."""

    SHA256 = "sha256"
    MD5 = "md5"

    @property
    def header_field(self) -> str:
        return "contentSha256" if self is HashProfile.SHA256 else "contentMd5"

    @classmethod
    def from_name(cls, name: Optional[str]) -> "HashProfile":
        """Resolve a profile from a config value such as ``"sha256"`` or ``"MD5"``."""
        if not name:
            return cls.SHA256
        normalized = name.strip().lower().replace("-", "")
        for profile in cls:
            if profile.value == normalized:
                return profile
        raise ValueError(f"Unknown content hash profile: {name!r} (expected sha256 or md5)")


def _key_order(key: str) -> bytes:
    # UTF-16 code unit order, which is how the API's reference clients sort keys.
    return key.encode("utf-16-be", "surrogatepass")


def sort_keys(value: Any) -> Any:
    """
    Return a copy of ``value`` with every mapping rebuilt in sorted key order.

    Arrays keep their element order; only the mappings inside them are sorted.
    Scalars pass through, except integral floats which become ints so that
    ``10.0`` encodes as ``10`` the way other JSON producers write it.

    Raises:
        SerializationError: On cycles, non-string keys, NaN/Infinity or values
            that have no JSON representation.
    """
    return _sort(value, set())


def _sort(value: Any, active: set) -> Any:
    if isinstance(value, Mapping):
        marker = id(value)
        if marker in active:
            raise SerializationError("Request body contains a circular reference")
        active.add(marker)
        try:
            for key in value:
                if not isinstance(key, str):
                    raise SerializationError(
                        f"Request body keys must be strings, got {type(key).__name__}: {key!r}"
                    )
            return {key: _sort(value[key], active) for key in sorted(value, key=_key_order)}
        finally:
            active.discard(marker)

    if isinstance(value, (list, tuple)):
        marker = id(value)
        if marker in active:
            raise SerializationError("Request body contains a circular reference")
        active.add(marker)
        try:
            return [_sort(item, active) for item in value]
        finally:
            active.discard(marker)

    if value is None or isinstance(value, (str, bool, int)):
        return value

    if isinstance(value, float):
        if not math.isfinite(value):
            raise SerializationError(f"Request body contains a non-finite number: {value!r}")
        if value.is_integer() and abs(value) < _MAX_INTEGRAL_FLOAT:
            return int(value)
        return value

    raise SerializationError(
        f"Request body contains a value with no JSON representation: {type(value).__name__}"
    )


def canonical_json(value: Any) -> str:
    """
    Encode ``value`` as compact, recursively key-sorted JSON.

    Non-ASCII text is written as-is (the string is later encoded as UTF-8), so
    the output matches what the API computes from the received bytes.

    Raises:
        SerializationError: If ``value`` cannot be represented.
    """
    sorted_value = sort_keys(value)
    try:
        encoded = json.dumps(
            sorted_value,
            separators=(",", ":"),
            ensure_ascii=False,
            allow_nan=False,
        )
    except (TypeError, ValueError) as e:
        raise SerializationError(f"Request body is not JSON-serializable: {e}") from e
    try:
        encoded.encode("utf-8")
    except UnicodeEncodeError as e:
        # Lone surrogates survive json.dumps but have no UTF-8 form to hash or send.
        raise SerializationError(f"Request body contains text with no UTF-8 encoding: {e}") from e
    return encoded


def content_hash(canonical_body: str, profile: HashProfile = HashProfile.SHA256) -> str:
    """Base64 digest of the UTF-8 bytes of ``canonical_body``."""
    digest = hashlib.new(profile.value, canonical_body.encode("utf-8")).digest()
    return base64.b64encode(digest).decode("ascii")


def is_consistent(first: Any, second: Any) -> bool:
    """True when both bodies produce the same canonical string."""
    return canonical_json(first) == canonical_json(second)

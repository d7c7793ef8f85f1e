"""
Token inspection for debugging payware authentication failures.

The API answers a bad token with terse codes such as ``ERR_INVALID_CONTENT_HASH``
or ``ERR_INVALID_SIGNATURE``. ``validate_token`` decodes a token locally and
explains which part does not match what payware expects.
"""

import base64
import json
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from jwcrypto import jws
from jwcrypto.common import JWException

from payware_mcp.canonical import HashProfile, canonical_json, content_hash
from payware_mcp.errors import TokenFormatError
from payware_mcp.keys import load_public_key
from payware_mcp.signer import ALGORITHM, PAYWARE_AUDIENCE, TOKEN_TYPE

logger = logging.getLogger(__name__)


@dataclass
class DecodedToken:
    header: Dict[str, Any]
    claims: Dict[str, Any]
    signature: str


@dataclass
class HashCheck:
    """Result of recomputing the content hash over an expected body."""

    field: str
    provided: str
    calculated: str
    canonical_body: str

    @property
    def matches(self) -> bool:
        return self.provided == self.calculated


@dataclass
class ValidationReport:
    """Outcome of ``validate_token``."""

    header: Dict[str, Any]
    claims: Dict[str, Any]
    checks: Dict[str, bool]
    hash_check: Optional[HashCheck] = None
    signature_valid: Optional[bool] = None
    issues: List[str] = field(default_factory=list)

    @property
    def valid(self) -> bool:
        if not all(self.checks.values()):
            return False
        if self.hash_check is not None and not self.hash_check.matches:
            return False
        return self.signature_valid is not False


def _b64_json(segment: str) -> Dict[str, Any]:
    padded = segment + "=" * (-len(segment) % 4)
    decoded = json.loads(base64.urlsafe_b64decode(padded.encode("ascii")))
    if not isinstance(decoded, dict):
        raise ValueError("segment is not a JSON object")
    return decoded


def decode_token(token: str) -> DecodedToken:
    """
    Split and decode a compact JWS without checking its signature.

    Raises:
        TokenFormatError: If the token is not three base64url JSON segments.
    """
    if not token or not isinstance(token, str):
        raise TokenFormatError("Token is empty")

    parts = token.strip().split(".")
    if len(parts) != 3:
        raise TokenFormatError(f"Token must have 3 dot-separated parts, found {len(parts)}")

    try:
        header = _b64_json(parts[0])
        claims = _b64_json(parts[1])
    except (ValueError, UnicodeError) as e:
        raise TokenFormatError(f"Token segments are not valid base64url JSON: {e}") from e

    return DecodedToken(header=header, claims=claims, signature=parts[2])


def verify_signature(token: str, public_key: str) -> bool:
    """
    Check the RS256 signature of ``token`` against an RSA public key.

    Raises:
        KeyLoadError: If ``public_key`` cannot be parsed.
    """
    key = load_public_key(public_key)
    verifier = jws.JWS()
    try:
        verifier.deserialize(token.strip())
        verifier.verify(key, alg=ALGORITHM)
    except (JWException, ValueError) as e:
        logger.debug("Signature verification failed: %s", e)
        return False
    return True


def validate_token(
    token: str,
    expected_body: Any = None,
    public_key: Optional[str] = None,
) -> ValidationReport:
    """
    Check a token against what the payware API expects.

    Args:
        token: Compact JWT.
        expected_body: The request body the token was meant for. When given,
            the content hash is recomputed over its canonical encoding.
        public_key: Optional RSA public key to verify the signature with.

    Raises:
        TokenFormatError: If the token cannot be decoded at all.
        KeyLoadError: If ``public_key`` is given but malformed.
        SerializationError: If ``expected_body`` has no canonical form.
    """
    decoded = decode_token(token)
    header, claims = decoded.header, decoded.claims

    hash_field = None
    for profile in (HashProfile.SHA256, HashProfile.MD5):
        if header.get(profile.header_field):
            hash_field = profile
            break

    # ISV tokens are addressed to a merchant partner id instead of payware
    audience_ok = bool(claims.get("aud")) if claims.get("sub") else claims.get("aud") == PAYWARE_AUDIENCE

    checks = {
        "algorithm": header.get("alg") == ALGORITHM,
        "type": header.get("typ") == TOKEN_TYPE,
        "audience": audience_ok,
        "issuer": bool(claims.get("iss")),
        "issued_at": isinstance(claims.get("iat"), int) and not isinstance(claims.get("iat"), bool),
    }
    report = ValidationReport(header=header, claims=claims, checks=checks)

    if not checks["algorithm"]:
        report.issues.append(f"Algorithm should be '{ALGORITHM}' (found: {header.get('alg')})")
    if not checks["type"]:
        report.issues.append(f"Type should be '{TOKEN_TYPE}' (found: {header.get('typ')})")
    if not checks["audience"]:
        report.issues.append(f"Audience should be '{PAYWARE_AUDIENCE}' (found: {claims.get('aud')})")
    if not checks["issuer"]:
        report.issues.append("Missing issuer (iss) claim")
    if not checks["issued_at"]:
        report.issues.append("Missing or non-integer issued at (iat) claim")
    if hash_field is HashProfile.MD5:
        report.issues.append("Using deprecated MD5 hash (contentMd5); prefer contentSha256")

    if expected_body is not None:
        if hash_field is None:
            report.issues.append("A request body was given but the token carries no content hash")
            report.checks["content_hash"] = False
        else:
            body = canonical_json(expected_body)
            report.hash_check = HashCheck(
                field=hash_field.header_field,
                provided=header[hash_field.header_field],
                calculated=content_hash(body, hash_field),
                canonical_body=body,
            )
            if not report.hash_check.matches:
                report.issues.append(
                    "Content hash mismatch: the HTTP body must be the exact canonical JSON "
                    "string the hash was computed over"
                )

    if public_key:
        report.signature_valid = verify_signature(token, public_key)
        if not report.signature_valid:
            report.issues.append("Signature does not verify with the supplied public key")

    return report

"""
payware Request Signer - RS256 JWTs bound to a canonical request body.

Every call to the payware API carries ``Authorization: Bearer <jwt>``. For
requests with a body, the JWT header also carries a digest of the exact body
bytes. The signer produces both the token and that exact body string; the HTTP
layer must send the returned ``canonical_body`` verbatim.
"""

import json
import logging
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Optional, Union

from jwcrypto import jwk, jws
from jwcrypto.common import json_encode

from payware_mcp.canonical import HashProfile, canonical_json, content_hash
from payware_mcp.config import PartnerType, Settings
from payware_mcp.errors import ConfigurationError, KeyLoadError
from payware_mcp.keys import load_private_key, load_private_key_file

logger = logging.getLogger(__name__)

ALGORITHM = "RS256"
TOKEN_TYPE = "JWT"
PAYWARE_AUDIENCE = "https://payware.eu"


@dataclass(frozen=True)
class SigningIdentity:
    """
    Who is signing, and for whom.

    Attributes:
        issuer_id: payware partner id placed in ``iss``.
        private_key: RSA private key (JWK, or PEM text that will be loaded).
        audience: ``aud`` claim. payware itself for merchants and payment
            institutions; the target merchant's partner id for ISVs.
        subject: ``sub`` claim, set only for ISVs (the OAuth2 access token).
    """

    issuer_id: str
    private_key: Union[jwk.JWK, str, None]
    audience: str = PAYWARE_AUDIENCE
    subject: Optional[str] = None


@dataclass
class SignedRequest:
    """A bearer token and the body string it was computed over."""

    token: str
    canonical_body: Optional[str]
    content_hash: Optional[str]
    hash_field: Optional[str]
    issued_at: int

    @property
    def issued_at_iso(self) -> str:
        return datetime.fromtimestamp(self.issued_at, tz=timezone.utc).isoformat()

    def auth_headers(self, api_version: str = "1") -> dict:
        """Headers every payware request needs alongside this token."""
        return {
            "Authorization": f"Bearer {self.token}",
            "Content-Type": "application/json",
            "Api-Version": api_version,
        }


def sign(
    identity: SigningIdentity,
    body: Any = None,
    hash_profile: HashProfile = HashProfile.SHA256,
    now: Optional[int] = None,
) -> SignedRequest:
    """
    Produce a signed bearer token and, when there is a body, its canonical string.

    Args:
        identity: Partner identity to sign as.
        body: JSON-representable request body, or None for read-only calls.
            An empty mapping is still a body and gets a content hash.
        hash_profile: Which digest and header field carry the content hash.
        now: Override for the ``iat`` claim (unix seconds).

    Returns:
        A SignedRequest whose ``canonical_body`` must be sent as the HTTP body.

    Raises:
        ConfigurationError: If the issuer or audience is empty.
        KeyLoadError: If the private key is missing or not a usable RSA key.
        SerializationError: If the body has no canonical JSON form.
    """
    if not identity.issuer_id:
        raise ConfigurationError("missing partner id")
    if not identity.audience:
        raise ConfigurationError("missing audience")
    if identity.private_key is None or identity.private_key == "":
        raise KeyLoadError("missing private key")

    key = load_private_key(identity.private_key)

    canonical_body = None
    digest = None
    header = {"alg": ALGORITHM, "typ": TOKEN_TYPE}
    if body is not None:
        canonical_body = canonical_json(body)
        digest = content_hash(canonical_body, hash_profile)
        header[hash_profile.header_field] = digest

    issued_at = int(time.time()) if now is None else int(now)
    claims = {"iss": identity.issuer_id, "aud": identity.audience, "iat": issued_at}
    if identity.subject:
        claims["sub"] = identity.subject

    token = jws.JWS(json.dumps(claims, separators=(",", ":")).encode("utf-8"))
    token.add_signature(key, None, json_encode(header), None)

    logger.debug(
        "Signed request for %s (aud=%s, body=%s)",
        identity.issuer_id,
        identity.audience,
        "yes" if canonical_body is not None else "no",
    )
    return SignedRequest(
        token=token.serialize(compact=True),
        canonical_body=canonical_body,
        content_hash=digest,
        hash_field=hash_profile.header_field if digest else None,
        issued_at=issued_at,
    )


class RequestSigner:
    """
    Signs request bodies for one partner identity.

    Example:
        >>> signer = RequestSigner(SigningIdentity("PARTNER1", private_key_pem))
        >>> signed = signer.sign({"trData": {"amount": "10.00", "currency": "EUR"}})
        >>> httpx.post(url, content=signed.canonical_body, headers=signed.auth_headers())
    """

    def __init__(self, identity: SigningIdentity, hash_profile: HashProfile = HashProfile.SHA256):
        if not identity.issuer_id:
            raise ConfigurationError("missing partner id")
        # Load once so every later sign() reuses the parsed key.
        self.identity = SigningIdentity(
            issuer_id=identity.issuer_id,
            private_key=load_private_key(identity.private_key or ""),
            audience=identity.audience,
            subject=identity.subject,
        )
        self.hash_profile = hash_profile

    def sign(self, body: Any = None, now: Optional[int] = None) -> SignedRequest:
        return sign(self.identity, body, hash_profile=self.hash_profile, now=now)


def identity_from_settings(
    settings: Settings,
    partner_id: Optional[str] = None,
    private_key: Optional[str] = None,
    merchant_id: Optional[str] = None,
    oauth2_token: Optional[str] = None,
    use_sandbox: Optional[bool] = None,
    oauth2_endpoint: bool = False,
) -> SigningIdentity:
    """
    Build the signing identity for the configured partner type.

    Explicit ``partner_id`` / ``private_key`` arguments win over the
    environment. ISV partners sign on behalf of a merchant: ``aud`` is the
    merchant's partner id and ``sub`` the OAuth2 token the merchant granted.
    Calls to the OAuth2 endpoints themselves use the standard identity, since
    that is how the token is obtained in the first place.

    Raises:
        ConfigurationError: If the partner id, or for ISVs the merchant id or
            OAuth2 token, is missing.
        KeyLoadError: If no private key is supplied or configured, or it cannot be read.
    """
    issuer = partner_id or settings.partner_id
    if not issuer:
        raise ConfigurationError("missing partner id (set PAYWARE_PARTNER_ID)")

    if private_key:
        key = load_private_key(private_key)
    else:
        key_path = settings.private_key_path(use_sandbox)
        if not key_path:
            raise KeyLoadError(
                f"missing private key (set {settings.private_key_env_var(use_sandbox)})"
            )
        key = load_private_key_file(key_path)

    if settings.partner_type is PartnerType.ISV and not oauth2_endpoint:
        merchant = merchant_id or settings.default_merchant_id
        if not merchant:
            raise ConfigurationError("Merchant partner id is required for ISV requests")
        if not oauth2_token:
            raise ConfigurationError("OAuth2 token is required for ISV requests")
        return SigningIdentity(issuer_id=issuer, private_key=key, audience=merchant, subject=oauth2_token)

    return SigningIdentity(issuer_id=issuer, private_key=key)

"""
HTTP client for the payware REST API.

Each request is signed right before it is sent, and the body on the wire is
the exact ``canonical_body`` string the signer hashed. httpx is given that
string through ``content=``; passing the original object through ``json=``
would re-serialize it and break the content hash.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Callable, Mapping

import httpx

from payware_mcp.config import API_VERSION, Settings
from payware_mcp.errors import ApiError
from payware_mcp.signer import SigningIdentity, identity_from_settings, sign

logger = logging.getLogger(__name__)

CONTENT_HASH_ERROR = "ERR_INVALID_CONTENT_HASH"


@dataclass
class ApiResponse:
    """A successful payware API response."""

    status_code: int
    data: Any
    url: str
    method: str
    request_id: str | None = None
    canonical_body: str | None = None


def _decode(response: httpx.Response) -> Any:
    if not response.content:
        return None
    content_type = response.headers.get("content-type", "")
    if "json" in content_type:
        try:
            return response.json()
        except ValueError:
            return response.text
    if content_type.startswith("text/"):
        return response.text
    # Images and exports come back as raw bytes.
    return response.content


def _error_from_response(response: httpx.Response, method: str, url: str) -> ApiError:
    details = _decode(response)
    code = None
    message = None
    if isinstance(details, Mapping):
        code = details.get("code")
        message = details.get("message")
    if not message:
        message = f"{method} {url} failed with HTTP {response.status_code}"

    if code == CONTENT_HASH_ERROR or "contentSha256" in str(message) or "contentMd5" in str(message):
        message = (
            "Content hash mismatch: the content hash in the JWT header does not match "
            "the request body. The body sent must be the exact canonical JSON string "
            f"the hash was computed over. Original error: {message}"
        )
    return ApiError(message, status_code=response.status_code, code=code, details=details)


class PaywareClient:
    """
    Synchronous client for the payware API.

    Example:
        ```python
        client = PaywareClient(Settings.from_env())
        response = client.request("POST", "/transactions", body={...})
        print(response.data["transactionId"])
        ```
    """

    def __init__(
        self,
        settings: Settings,
        identity_factory: Callable[..., SigningIdentity] | None = None,
        transport: httpx.BaseTransport | None = None,
    ):
        """
        Initialize the client.

        Args:
            settings: Resolved settings (base URLs, timeout, hash profile).
            identity_factory: Builds the SigningIdentity for a request; receives
                the keyword overrides passed to ``request``. Defaults to
                ``identity_from_settings``.
            transport: Optional httpx transport (tests use ``httpx.MockTransport``).
        """
        self.settings = settings
        self._identity_factory = identity_factory or (
            lambda **overrides: identity_from_settings(settings, **overrides)
        )
        self._transport = transport

    def _client(self) -> httpx.Client:
        return httpx.Client(timeout=self.settings.http_timeout, transport=self._transport)

    def request(
        self,
        method: str,
        path: str,
        body: Any = None,
        params: Mapping[str, Any] | None = None,
        use_sandbox: bool | None = None,
        identity: SigningIdentity | None = None,
        oauth2: bool = False,
        files: Mapping[str, Any] | None = None,
        **identity_overrides: Any,
    ) -> ApiResponse:
        """
        Sign and send one API request.

        Args:
            method: HTTP verb.
            path: Path below the API base URL, e.g. ``/transactions/pw123``.
            body: Request body for POST/PUT/PATCH, or None.
            params: Query string parameters; None values are dropped.
            use_sandbox: Override the configured environment.
            identity: Sign as this identity instead of building one.
            oauth2: Target the OAuth2 endpoints: no ``/api`` prefix, the
                standard (non-ISV) identity and no ``Api-Version`` header.
            files: Multipart upload parts. The request is then signed without
                a body and httpx sets the multipart ``Content-Type``.
            **identity_overrides: Passed to the identity factory
                (partner_id, private_key, merchant_id, oauth2_token).

        Raises:
            ApiError: On a non-2xx response or a transport failure.
            ConfigurationError, KeyLoadError, SerializationError: From signing.
        """
        method = method.upper()
        base = self.settings.oauth_base_url(use_sandbox) if oauth2 else self.settings.base_url(use_sandbox)
        url = f"{base}/{path.lstrip('/')}"

        if identity is None:
            if oauth2:
                identity_overrides["oauth2_endpoint"] = True
            identity = self._identity_factory(use_sandbox=use_sandbox, **identity_overrides)
        signed = sign(identity, None if files else body, hash_profile=self.settings.hash_profile)
        headers = signed.auth_headers(API_VERSION)
        if oauth2:
            del headers["Api-Version"]
        if files:
            del headers["Content-Type"]

        query = {k: v for k, v in (params or {}).items() if v is not None}
        content = signed.canonical_body.encode("utf-8") if signed.canonical_body is not None else None

        logger.info("payware %s %s", method, url)
        try:
            with self._client() as client:
                response = client.request(
                    method, url, content=content, files=files, params=query, headers=headers
                )
        except httpx.HTTPError as e:
            logger.warning("payware %s %s failed: %s", method, url, e)
            raise ApiError(f"Could not reach payware API at {url}: {e}") from e

        if response.is_error:
            error = _error_from_response(response, method, url)
            logger.warning("payware %s %s -> %s %s", method, url, response.status_code, error.code or "")
            raise error

        return ApiResponse(
            status_code=response.status_code,
            data=_decode(response),
            url=url,
            method=method,
            request_id=response.headers.get("x-request-id"),
            canonical_body=signed.canonical_body,
        )

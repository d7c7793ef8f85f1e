# payware_mcp/config.py
"""
Centralized configuration for payware-mcp.

All settings come from environment variables with sensible defaults, so the
same server binary can target the sandbox or production API without code
changes. A ``.env`` file in the working directory is loaded first, quietly:
nothing here may write to stdout, which belongs to the MCP transport.

Usage:
    from payware_mcp.config import Settings

    settings = Settings.from_env()
    url = settings.base_url()

Environment Variables:
    PAYWARE_PARTNER_ID: Partner id issued by payware (required for signing)
    PAYWARE_PARTNER_TYPE: merchant | isv | payment_institution (default: merchant)
    PAYWARE_ENVIRONMENT: sandbox | production (default: sandbox)
    PAYWARE_SANDBOX_PRIVATE_KEY_PATH: PEM private key for the sandbox
    PAYWARE_PRODUCTION_PRIVATE_KEY_PATH: PEM private key for production
    PAYWARE_SANDBOX_URL: Sandbox API base (default: https://sandbox.payware.eu/api)
    PAYWARE_PRODUCTION_URL: Production API base (default: https://api.payware.eu/api)
    PAYWARE_CONTENT_HASH: sha256 | md5 (default: sha256)
    PAYWARE_OAUTH_CLIENT_ID / PAYWARE_OAUTH_CLIENT_SECRET: ISV OAuth2 credentials
    PAYWARE_DEFAULT_MERCHANT_ID: ISV default target merchant
    PAYWARE_HTTP_TIMEOUT: HTTP timeout in seconds (default: 30)
    PAYWARE_LOG_LEVEL: Logging level for the server (default: INFO)
"""

import os
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Dict, Final, List, Mapping, Optional

from dotenv import find_dotenv, load_dotenv

from payware_mcp.canonical import HashProfile
from payware_mcp.errors import ConfigurationError, KeyLoadError

# =============================================================================
# Defaults
# =============================================================================

DEFAULT_SANDBOX_URL: Final[str] = "https://sandbox.payware.eu/api"
DEFAULT_PRODUCTION_URL: Final[str] = "https://api.payware.eu/api"
DEFAULT_HTTP_TIMEOUT: Final[float] = 30.0
API_VERSION: Final[str] = "1"


class PartnerType(str, Enum):
    MERCHANT = "merchant"
    ISV = "isv"
    PAYMENT_INSTITUTION = "payment_institution"


# =============================================================================
# Partner Capabilities
# =============================================================================

PARTNER_TYPE_CONFIGS: Final[Dict[PartnerType, dict]] = {
    PartnerType.MERCHANT: {
        "name": "Merchant",
        "description": "Direct businesses accepting payments",
        "auth_type": "standard_jwt",
        "capabilities": [
            "transactions",
            "products",
            "poi",
            "data",
            "deep_links",
        ],
    },
    PartnerType.ISV: {
        "name": "Independent Software Vendor",
        "description": "Software providers serving multiple merchants",
        "auth_type": "oauth2_jwt",
        "capabilities": [
            "oauth2",
            "transactions",
            "products",
            "poi",
            "data",
            "deep_links",
        ],
    },
    PartnerType.PAYMENT_INSTITUTION: {
        "name": "Payment Institution",
        "description": "Banks, e-wallets, and financial institutions",
        "auth_type": "standard_jwt",
        "capabilities": [
            "transactions",
            "pi_transactions",
            "data",
            "deep_links",
        ],
    },
}


def parse_partner_type(value: Optional[str]) -> PartnerType:
    """Resolve a partner type name, defaulting to merchant."""
    if not value:
        return PartnerType.MERCHANT
    try:
        return PartnerType(value.strip().lower())
    except ValueError:
        valid = ", ".join(p.value for p in PartnerType)
        raise ConfigurationError(f"Invalid partner type: {value}. Valid types: {valid}")


def has_capability(partner_type: PartnerType, capability: str) -> bool:
    return capability in PARTNER_TYPE_CONFIGS[partner_type]["capabilities"]


# =============================================================================
# Settings
# =============================================================================


@dataclass
class Settings:
    """Resolved payware-mcp settings."""

    partner_id: Optional[str] = None
    partner_type: PartnerType = PartnerType.MERCHANT
    use_sandbox: bool = True
    sandbox_private_key_path: Optional[str] = None
    production_private_key_path: Optional[str] = None
    sandbox_url: str = DEFAULT_SANDBOX_URL
    production_url: str = DEFAULT_PRODUCTION_URL
    hash_profile: HashProfile = HashProfile.SHA256
    oauth_client_id: Optional[str] = None
    oauth_client_secret: Optional[str] = None
    default_merchant_id: Optional[str] = None
    http_timeout: float = DEFAULT_HTTP_TIMEOUT
    log_level: str = "INFO"

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None, load_env_file: bool = True) -> "Settings":
        """
        Build settings from the environment.

        Args:
            environ: Mapping to read instead of ``os.environ`` (tests).
            load_env_file: Load ``.env`` into ``os.environ`` first. Ignored when
                ``environ`` is given.

        Raises:
            ConfigurationError: On an invalid partner type, environment name,
                hash profile or timeout.
        """
        if environ is None:
            if load_env_file:
                load_dotenv(find_dotenv(usecwd=True), override=False)
            environ = os.environ

        environment = (environ.get("PAYWARE_ENVIRONMENT") or "sandbox").strip().lower()
        if environment not in ("sandbox", "production"):
            raise ConfigurationError(
                f"Invalid PAYWARE_ENVIRONMENT: {environment}. Expected sandbox or production"
            )

        try:
            hash_profile = HashProfile.from_name(environ.get("PAYWARE_CONTENT_HASH"))
        except ValueError as e:
            raise ConfigurationError(str(e))

        try:
            timeout = float(environ.get("PAYWARE_HTTP_TIMEOUT") or DEFAULT_HTTP_TIMEOUT)
        except ValueError:
            raise ConfigurationError(
                f"Invalid PAYWARE_HTTP_TIMEOUT: {environ.get('PAYWARE_HTTP_TIMEOUT')!r}"
            )

        return cls(
            partner_id=environ.get("PAYWARE_PARTNER_ID") or None,
            partner_type=parse_partner_type(environ.get("PAYWARE_PARTNER_TYPE")),
            use_sandbox=environment == "sandbox",
            sandbox_private_key_path=environ.get("PAYWARE_SANDBOX_PRIVATE_KEY_PATH") or None,
            production_private_key_path=environ.get("PAYWARE_PRODUCTION_PRIVATE_KEY_PATH") or None,
            sandbox_url=environ.get("PAYWARE_SANDBOX_URL") or DEFAULT_SANDBOX_URL,
            production_url=environ.get("PAYWARE_PRODUCTION_URL") or DEFAULT_PRODUCTION_URL,
            hash_profile=hash_profile,
            oauth_client_id=environ.get("PAYWARE_OAUTH_CLIENT_ID") or None,
            oauth_client_secret=environ.get("PAYWARE_OAUTH_CLIENT_SECRET") or None,
            default_merchant_id=environ.get("PAYWARE_DEFAULT_MERCHANT_ID") or None,
            http_timeout=timeout,
            log_level=(environ.get("PAYWARE_LOG_LEVEL") or "INFO").upper(),
        )

    def _sandbox(self, use_sandbox: Optional[bool]) -> bool:
        return self.use_sandbox if use_sandbox is None else use_sandbox

    def base_url(self, use_sandbox: Optional[bool] = None) -> str:
        """API base URL for the requested (or configured) environment, without trailing slash."""
        url = self.sandbox_url if self._sandbox(use_sandbox) else self.production_url
        return url.rstrip("/")

    def oauth_base_url(self, use_sandbox: Optional[bool] = None) -> str:
        """OAuth2 endpoints live beside the API, not under ``/api``."""
        url = self.base_url(use_sandbox)
        return url[: -len("/api")] if url.endswith("/api") else url

    def private_key_path(self, use_sandbox: Optional[bool] = None) -> Optional[str]:
        if self._sandbox(use_sandbox):
            return self.sandbox_private_key_path
        return self.production_private_key_path

    def private_key_env_var(self, use_sandbox: Optional[bool] = None) -> str:
        if self._sandbox(use_sandbox):
            return "PAYWARE_SANDBOX_PRIVATE_KEY_PATH"
        return "PAYWARE_PRODUCTION_PRIVATE_KEY_PATH"

    def validate(self) -> None:
        """
        Check that everything needed to sign requests is present.

        Raises:
            ConfigurationError: Missing partner id or ISV OAuth2 credentials.
            KeyLoadError: Missing or unreadable private key file.
        """
        if not self.partner_id:
            raise ConfigurationError("PAYWARE_PARTNER_ID environment variable is required")

        key_path = self.private_key_path()
        if not key_path:
            raise KeyLoadError(f"{self.private_key_env_var()} environment variable is required")
        if not Path(key_path).expanduser().is_file():
            raise KeyLoadError(f"Cannot read private key from {key_path}: file not found")

        if self.partner_type is PartnerType.ISV:
            if not self.oauth_client_id:
                raise ConfigurationError("PAYWARE_OAUTH_CLIENT_ID is required for ISV partners")
            if not self.oauth_client_secret:
                raise ConfigurationError("PAYWARE_OAUTH_CLIENT_SECRET is required for ISV partners")

    def summary(self) -> Dict[str, object]:
        """Settings overview that is safe to show (no secrets, no key material)."""
        info: Dict[str, object] = {
            "partner_id": self.partner_id or "Not set",
            "partner_type": self.partner_type.value,
            "environment": "sandbox" if self.use_sandbox else "production",
            "base_url": self.base_url(),
            "sandbox_private_key": "Set" if self.sandbox_private_key_path else "Not set",
            "production_private_key": "Set" if self.production_private_key_path else "Not set",
            "content_hash": self.hash_profile.header_field,
            "http_timeout": self.http_timeout,
        }
        if self.partner_type is PartnerType.ISV:
            info["oauth_client_id"] = self.oauth_client_id or "Not set"
            info["default_merchant_id"] = self.default_merchant_id or "Not set"
        return info

    @property
    def capabilities(self) -> List[str]:
        return list(PARTNER_TYPE_CONFIGS[self.partner_type]["capabilities"])

"""
payware-mcp - MCP server for the payware payment API.

Signs every API request with an RS256 JWT bound to the canonical JSON form of
its body, and exposes the payware transaction, product, POI, data retrieval,
deep link and OAuth2 endpoints as MCP tools.
"""

__version__ = "1.0.0"

# Request signing
from .canonical import HashProfile, canonical_json, content_hash
from .signer import RequestSigner, SignedRequest, SigningIdentity, sign

# Configuration and keys
from .config import PartnerType, Settings
from .keys import RSAKeyPair, generate_rsa_keypair, load_private_key

# Inspection
from .verifier import ValidationReport, validate_token

# API access
from .client import ApiResponse, PaywareClient
from .errors import (
    ApiError,
    ConfigurationError,
    KeyLoadError,
    OperationError,
    PaywareError,
    SerializationError,
    TokenFormatError,
)

__all__ = [
    "__version__",
    "HashProfile",
    "canonical_json",
    "content_hash",
    "RequestSigner",
    "SignedRequest",
    "SigningIdentity",
    "sign",
    "PartnerType",
    "Settings",
    "RSAKeyPair",
    "generate_rsa_keypair",
    "load_private_key",
    "ValidationReport",
    "validate_token",
    "ApiResponse",
    "PaywareClient",
    "PaywareError",
    "ConfigurationError",
    "KeyLoadError",
    "SerializationError",
    "TokenFormatError",
    "OperationError",
    "ApiError",
]

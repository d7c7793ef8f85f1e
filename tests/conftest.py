"""
Shared pytest fixtures for payware-mcp tests.
"""

import pytest

from payware_mcp.config import PartnerType, Settings
from payware_mcp.keys import RSAKeyPair, clear_key_cache, generate_rsa_keypair
from payware_mcp.signer import SigningIdentity


@pytest.fixture(scope="session")
def keypair() -> RSAKeyPair:
    """One RSA key pair for the whole run; generation is slow."""
    return generate_rsa_keypair(2048)


@pytest.fixture(scope="session")
def other_keypair() -> RSAKeyPair:
    """A second, unrelated key pair for signature mismatch tests."""
    return generate_rsa_keypair(2048)


@pytest.fixture(autouse=True)
def _fresh_key_cache():
    clear_key_cache()
    yield
    clear_key_cache()


@pytest.fixture
def private_key_file(tmp_path, keypair):
    """Private key written to a PEM file."""
    path = tmp_path / "sandbox_private.pem"
    path.write_text(keypair.private_key_pem, encoding="utf-8")
    return path


@pytest.fixture
def identity(keypair) -> SigningIdentity:
    """Merchant identity signing as PARTNER1."""
    return SigningIdentity(issuer_id="PARTNER1", private_key=keypair.private_key_pem)


@pytest.fixture
def settings(private_key_file) -> Settings:
    """Sandbox merchant settings pointing at the test key file."""
    return Settings(
        partner_id="PARTNER1",
        partner_type=PartnerType.MERCHANT,
        use_sandbox=True,
        sandbox_private_key_path=str(private_key_file),
        production_private_key_path=str(private_key_file),
        sandbox_url="https://sandbox.test/api",
        production_url="https://prod.test/api",
    )


@pytest.fixture
def isv_settings(settings) -> Settings:
    """ISV settings with OAuth2 client credentials and a default merchant."""
    settings.partner_type = PartnerType.ISV
    settings.oauth_client_id = "client-1"
    settings.oauth_client_secret = "secret-1"
    settings.default_merchant_id = "MERCHANT9"
    return settings


@pytest.fixture
def transaction_body() -> dict:
    """A create-transaction body with keys deliberately out of order."""
    return {
        "trOptions": {"type": "QR", "timeToLive": 120},
        "trData": {"reasonL1": "Coffee", "currency": "EUR", "amount": "10.00"},
    }

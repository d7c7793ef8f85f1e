"""
payware-mcp Command Line Interface.

Runs the MCP server and provides the signing helpers it is built on, for
debugging requests outside an MCP client.
"""

import argparse
import json
import logging
import os
import sys
from pathlib import Path
from typing import List, Optional

import anyio

from payware_mcp import __version__
from payware_mcp.canonical import canonical_json, content_hash
from payware_mcp.config import Settings
from payware_mcp.errors import PaywareError
from payware_mcp.keys import MIN_RSA_KEY_SIZE, generate_rsa_keypair
from payware_mcp.signer import identity_from_settings, sign
from payware_mcp.verifier import validate_token


def setup_logging(verbose: bool = False, level: str = "WARNING") -> None:
    """Configure logging on stderr; stdout may be the MCP transport."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else getattr(logging, level.upper(), logging.WARNING),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
        stream=sys.stderr,
    )


def _load_json(text: Optional[str]):
    if text is None:
        return None
    return json.loads(text)


def cmd_serve(args: argparse.Namespace) -> int:
    """Start the MCP server on stdio."""
    from payware_mcp.server import run_server

    try:
        settings = Settings.from_env()
        setup_logging(args.verbose, settings.log_level)
        settings.validate()
    except PaywareError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1

    anyio.run(run_server, settings)
    return 0


def cmd_keygen(args: argparse.Namespace) -> int:
    """Generate an RSA key pair."""
    try:
        pair = generate_rsa_keypair(args.size)
    except ValueError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1

    if args.out:
        out = Path(args.out).expanduser()
        out.mkdir(parents=True, exist_ok=True)
        private_path = out / "private_key.pem"
        public_path = out / "public_key.pem"
        private_path.write_text(pair.private_key_pem, encoding="utf-8")
        os.chmod(private_path, 0o600)
        public_path.write_text(pair.public_key_pem, encoding="utf-8")
        print(f"Private key: {private_path}")
        print(f"Public key:  {public_path}")
        print("Register the public key with payware; keep the private key secret.", file=sys.stderr)
    else:
        print(pair.private_key_pem.strip())
        print(pair.public_key_pem.strip())
    return 0


def cmd_sign(args: argparse.Namespace) -> int:
    """Sign a request body (or no body) with the configured identity."""
    try:
        body = _load_json(args.body)
    except ValueError as e:
        print(f"Error: --body is not valid JSON: {e}", file=sys.stderr)
        return 1

    try:
        settings = Settings.from_env()
        identity = identity_from_settings(
            settings,
            merchant_id=args.merchant_id,
            oauth2_token=args.oauth2_token,
        )
        signed = sign(identity, body, hash_profile=settings.hash_profile)
    except PaywareError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1

    if args.json:
        print(json.dumps({
            "token": signed.token,
            "canonicalBody": signed.canonical_body,
            "hashField": signed.hash_field,
            "contentHash": signed.content_hash,
            "issuedAt": signed.issued_at,
        }, indent=2, ensure_ascii=False))
    else:
        print(signed.token)
        if signed.canonical_body is not None:
            print(f"# Send this exact body: {signed.canonical_body}", file=sys.stderr)
    return 0


def cmd_verify(args: argparse.Namespace) -> int:
    """Inspect a token and report why payware would reject it."""
    try:
        body = _load_json(args.body)
        public_key = Path(args.public_key).expanduser().read_text(encoding="utf-8") if args.public_key else None
        report = validate_token(args.token, expected_body=body, public_key=public_key)
    except (PaywareError, ValueError, OSError) as e:
        print(f"Error verifying token: {e}", file=sys.stderr)
        return 1

    if args.json:
        result = {
            "valid": report.valid,
            "header": report.header,
            "claims": report.claims,
            "checks": report.checks,
            "issues": report.issues,
        }
        if report.hash_check is not None:
            result["hashMatches"] = report.hash_check.matches
        if report.signature_valid is not None:
            result["signatureValid"] = report.signature_valid
        print(json.dumps(result, indent=2, ensure_ascii=False))
    else:
        print("VALID" if report.valid else "INVALID")
        print(f"   Issuer:   {report.claims.get('iss')}")
        print(f"   Audience: {report.claims.get('aud')}")
        for name, ok in report.checks.items():
            print(f"   [{'ok' if ok else 'FAIL'}] {name}")
        if report.hash_check is not None:
            print(f"   [{'ok' if report.hash_check.matches else 'FAIL'}] {report.hash_check.field}")
        if report.signature_valid is not None:
            print(f"   [{'ok' if report.signature_valid else 'FAIL'}] signature")
        for issue in report.issues:
            print(f"   - {issue}")
    return 0 if report.valid else 1


def cmd_canonical(args: argparse.Namespace) -> int:
    """Print the canonical form of a JSON document."""
    try:
        canonical = canonical_json(json.loads(args.json_text))
        profile = Settings.from_env().hash_profile if args.hash else None
    except (PaywareError, ValueError) as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1

    print(canonical)
    if profile is not None:
        print(f"{profile.header_field}: {content_hash(canonical, profile)}")
    return 0


def cmd_config(args: argparse.Namespace) -> int:
    """Show the effective configuration (no secrets)."""
    try:
        settings = Settings.from_env()
        summary = settings.summary()
        if args.check:
            settings.validate()
    except PaywareError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1

    for key, value in summary.items():
        print(f"{key}: {value}")
    return 0


def main(argv: Optional[List[str]] = None) -> int:
    """Main entry point for the CLI."""
    parser = argparse.ArgumentParser(
        prog="payware-mcp",
        description="payware MCP server and request signing tools",
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    parser.add_argument("-v", "--verbose", action="store_true", help="Enable verbose output")

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    p_serve = subparsers.add_parser("serve", help="Run the MCP server on stdio")
    p_serve.set_defaults(func=cmd_serve)

    p_keygen = subparsers.add_parser("keygen", help="Generate an RSA key pair")
    p_keygen.add_argument("--size", type=int, default=MIN_RSA_KEY_SIZE, help="Key size in bits")
    p_keygen.add_argument("--out", help="Directory to write private_key.pem and public_key.pem to")
    p_keygen.set_defaults(func=cmd_keygen)

    p_sign = subparsers.add_parser("sign", help="Create a signed JWT for a request")
    p_sign.add_argument("--body", help="Request body as JSON")
    p_sign.add_argument("--merchant-id", help="ISV: merchant partner id (aud)")
    p_sign.add_argument("--oauth2-token", help="ISV: OAuth2 access token (sub)")
    p_sign.add_argument("--json", action="store_true", help="Output token, body and hash as JSON")
    p_sign.set_defaults(func=cmd_sign)

    p_verify = subparsers.add_parser("verify", help="Inspect and validate a JWT")
    p_verify.add_argument("token", help="The token to inspect")
    p_verify.add_argument("--body", help="Request body the token should be bound to (JSON)")
    p_verify.add_argument("--public-key", help="PEM file with the RSA public key")
    p_verify.add_argument("--json", action="store_true", help="Output as JSON")
    p_verify.set_defaults(func=cmd_verify)

    p_canonical = subparsers.add_parser("canonical", help="Print canonical JSON")
    p_canonical.add_argument("json_text", metavar="JSON", help="JSON document")
    p_canonical.add_argument("--hash", action="store_true", help="Also print the content hash")
    p_canonical.set_defaults(func=cmd_canonical)

    p_config = subparsers.add_parser("config", help="Show the effective configuration")
    p_config.add_argument("--check", action="store_true", help="Fail if signing is not configured")
    p_config.set_defaults(func=cmd_config)

    args = parser.parse_args(argv)

    if args.command != "serve":
        setup_logging(args.verbose)

    if not args.command:
        parser.print_help()
        return 0
    return args.func(args)


if __name__ == "__main__":
    sys.exit(main())

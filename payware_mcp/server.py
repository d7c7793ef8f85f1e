"""
payware MCP server.

Exposes every operation in ``payware_mcp.operations`` that the configured
partner type may call, plus a few local helpers for working with payware
authentication (token creation and inspection, key generation, canonical JSON
and request formatting).

stdout carries the JSON-RPC stream. Logging goes to stderr, and once the
transport is up ``sys.stdout`` is pointed at stderr for the whole process, so
nothing a tool prints, from any worker thread, can reach the client.

Usage:
    payware-mcp serve          # Start the server on stdio
    python -m payware_mcp      # Same
"""

from __future__ import annotations

import base64
import contextlib
import functools
import json
import logging
import shlex
import sys
from typing import Any, Callable, Dict, List, Mapping, Optional

import anyio
import mcp.types as types
from mcp.server import Server
from mcp.server.stdio import stdio_server

from payware_mcp import __version__
from payware_mcp.canonical import HashProfile, canonical_json, content_hash
from payware_mcp.client import ApiResponse, PaywareClient
from payware_mcp.config import API_VERSION, PARTNER_TYPE_CONFIGS, Settings
from payware_mcp.errors import OperationError, PaywareError
from payware_mcp.keys import generate_rsa_keypair
from payware_mcp.operations import (
    BODY_METHODS,
    Operation,
    available_operations,
    execute,
    get_operation,
    request_body,
    resolve_arguments,
)
from payware_mcp.signer import identity_from_settings, sign
from payware_mcp.verifier import decode_token, validate_token

logger = logging.getLogger(__name__)

SERVER_NAME = "payware-mcp"

FORMAT_REQUEST_TYPES = ("transaction", "headers", "curl")
CURL_METHODS = ("GET", "POST", "PUT", "PATCH", "DELETE")


def _json_block(value: Any) -> str:
    return "```json\n" + json.dumps(value, indent=2, ensure_ascii=False, default=str) + "\n```"


def _parse_json_arg(value: Any, name: str) -> Any:
    """Tool clients send JSON either as structured values or as strings."""
    if isinstance(value, str):
        try:
            return json.loads(value)
        except ValueError as e:
            raise OperationError(f"{name} is not valid JSON: {e}")
    return value


def format_response(tool_name: str, response: ApiResponse) -> str:
    """Render an API response as a short markdown summary and the payload."""
    data = response.data
    lines = [f"**{tool_name}**: HTTP {response.status_code}", f"{response.method} {response.url}"]
    if response.request_id:
        lines.append(f"Request ID: {response.request_id}")
    if isinstance(data, bytes):
        lines.append(f"Binary response ({len(data)} bytes), base64 encoded:")
        lines.append(base64.b64encode(data).decode("ascii"))
    elif data is not None:
        lines.append(_json_block(data))
    return "\n\n".join(lines)


def request_headers(token: str) -> Dict[str, str]:
    """Headers a payware API request sends with ``token``."""
    return {
        "Authorization": f"Bearer {token}",
        "Content-Type": "application/json",
        "Api-Version": API_VERSION,
        "Accept": "application/json",
    }


def format_curl(method: str, url: str, headers: Mapping[str, str], body: Optional[str] = None) -> str:
    """
    Render a request as a shell-safe curl command.

    ``body`` is passed with ``--data-raw`` exactly as given, so a canonical body
    keeps matching the content hash in the token.
    """
    lines = [f"curl -X {method.upper()} {shlex.quote(url)}"]
    lines.extend(f"  -H {shlex.quote(f'{name}: {value}')}" for name, value in headers.items())
    if body is not None:
        lines.append(f"  --data-raw {shlex.quote(body)}")
    return " \\\n".join(lines)


class PaywareToolbox:
    """
    Tool catalogue and dispatcher, independent of the MCP transport.

    Example:
        >>> toolbox = PaywareToolbox(Settings.from_env())
        >>> [tool.name for tool in toolbox.list_tools()][:1]
        ['payware_operations_create_transaction']
    """

    def __init__(self, settings: Settings, client: Optional[PaywareClient] = None):
        self.settings = settings
        self.client = client or PaywareClient(settings)
        self._operations: Dict[str, Operation] = {
            op.tool_name: op for op in available_operations(settings.partner_type)
        }
        self._local: Dict[str, Callable[[Dict[str, Any]], str]] = {
            "payware_authentication_create_jwt_token": self._create_jwt_token,
            "payware_authentication_validate_jwt": self._validate_jwt,
            "payware_authentication_generate_rsa_keys": self._generate_rsa_keys,
            "payware_utils_format_json_deterministic": self._format_json,
            "payware_utils_format_request": self._format_request,
            "payware_utils_server_info": self._server_info,
        }

    # =========================================================================
    # Catalogue
    # =========================================================================

    def _local_tools(self) -> List[types.Tool]:
        auth_properties = {
            "partnerId": {"type": "string", "description": "Partner ID (defaults to PAYWARE_PARTNER_ID)"},
            "privateKey": {"type": "string", "description": "RSA private key PEM (defaults to the configured key file)"},
            "useSandbox": {"type": "boolean", "description": "Use the sandbox key"},
            "merchantId": {"type": "string", "description": "ISV only: merchant partner ID (aud claim)"},
            "oauth2Token": {"type": "string", "description": "ISV only: OAuth2 access token (sub claim)"},
        }
        return [
            types.Tool(
                name="payware_authentication_create_jwt_token",
                description=(
                    "Create a signed payware JWT. With a requestBody the token carries its content "
                    "hash and the exact canonical body to send is returned alongside it."
                ),
                inputSchema={
                    "type": "object",
                    "properties": {
                        "requestBody": {
                            "type": "object",
                            "description": "Request body to bind to the token (object or JSON string)",
                        },
                        **auth_properties,
                    },
                },
            ),
            types.Tool(
                name="payware_authentication_validate_jwt",
                description="Decode a payware JWT and explain what is wrong with it, if anything.",
                inputSchema={
                    "type": "object",
                    "properties": {
                        "token": {"type": "string", "description": "JWT to inspect"},
                        "requestBody": {
                            "type": "object",
                            "description": "Body the token should be bound to (object or JSON string)",
                        },
                        "publicKey": {"type": "string", "description": "RSA public key PEM to verify the signature"},
                    },
                    "required": ["token"],
                },
            ),
            types.Tool(
                name="payware_authentication_generate_rsa_keys",
                description="Generate an RSA key pair to register with payware.",
                inputSchema={
                    "type": "object",
                    "properties": {
                        "keySize": {
                            "type": "integer",
                            "description": "Key size in bits (2048 to 8192)",
                            "default": 2048,
                        },
                    },
                },
            ),
            types.Tool(
                name="payware_utils_format_json_deterministic",
                description="Show the canonical JSON form of a body and its content hashes.",
                inputSchema={
                    "type": "object",
                    "properties": {
                        "data": {"description": "JSON value (or JSON string) to canonicalize"},
                    },
                    "required": ["data"],
                },
            ),
            types.Tool(
                name="payware_utils_format_request",
                description=(
                    "Format a payware request for debugging: a transaction body in canonical form, "
                    "the request headers, or a ready-to-run curl command."
                ),
                inputSchema={
                    "type": "object",
                    "properties": {
                        "type": {
                            "type": "string",
                            "enum": list(FORMAT_REQUEST_TYPES),
                            "description": "What to format",
                        },
                        "data": {
                            "type": "object",
                            "description": "create_transaction arguments (transaction) or the request body (curl)",
                        },
                        "jwtToken": {
                            "type": "string",
                            "description": "Token to use; signed with the configured identity when omitted",
                        },
                        "endpoint": {
                            "type": "string",
                            "description": "Full URL, or a path below the configured API base (curl)",
                        },
                        "method": {
                            "type": "string",
                            "enum": list(CURL_METHODS),
                            "description": "HTTP method (curl)",
                            "default": "POST",
                        },
                    },
                    "required": ["type"],
                },
            ),
            types.Tool(
                name="payware_utils_server_info",
                description="Show server version, configuration and available capabilities.",
                inputSchema={"type": "object", "properties": {}},
            ),
        ]

    def list_tools(self) -> List[types.Tool]:
        tools = [
            types.Tool(
                name=op.tool_name,
                description=op.description,
                inputSchema=op.input_schema(self.settings.partner_type),
            )
            for op in self._operations.values()
        ]
        return tools + self._local_tools()

    # =========================================================================
    # Dispatch
    # =========================================================================

    def call_tool(self, name: str, arguments: Optional[Mapping[str, Any]] = None) -> str:
        """
        Run one tool and return its text result.

        Raises:
            PaywareError: Any domain failure; the MCP layer reports it as an
                error result.
        """
        args = dict(arguments or {})
        logger.info("Tool call: %s", name)
        try:
            if name in self._local:
                return self._local[name](args)
            operation = self._operations.get(name)
            if operation is None:
                raise OperationError(f"Unknown tool: {name}")
            result = execute(operation, args, self.client)
        except PaywareError as e:
            logger.warning("Tool %s failed: %s", name, e)
            raise
        except Exception:
            logger.exception("Tool %s crashed", name)
            raise

        if isinstance(result, ApiResponse):
            return format_response(name, result)
        return f"**{name}**\n\n{_json_block(result)}"

    # =========================================================================
    # Local Tools
    # =========================================================================

    def _create_jwt_token(self, args: Dict[str, Any]) -> str:
        body = _parse_json_arg(args.get("requestBody"), "requestBody")
        identity = identity_from_settings(
            self.settings,
            partner_id=args.get("partnerId") or None,
            private_key=args.get("privateKey") or None,
            merchant_id=args.get("merchantId") or None,
            oauth2_token=args.get("oauth2Token") or None,
            use_sandbox=args.get("useSandbox"),
        )
        signed = sign(identity, body, hash_profile=self.settings.hash_profile)
        decoded = decode_token(signed.token)
        result = {
            "token": signed.token,
            "header": decoded.header,
            "claims": decoded.claims,
            "issuedAt": signed.issued_at_iso,
            "headers": signed.auth_headers(),
        }
        if signed.canonical_body is not None:
            result["canonicalBody"] = signed.canonical_body
            result[signed.hash_field] = signed.content_hash
        text = "**JWT created**\n\n" + _json_block(result)
        if signed.canonical_body is not None:
            text += "\n\nSend `canonicalBody` byte for byte as the HTTP body; any other encoding breaks the content hash."
        return text

    def _validate_jwt(self, args: Dict[str, Any]) -> str:
        token = args.get("token")
        if not token:
            raise OperationError("token is required")
        body = _parse_json_arg(args.get("requestBody"), "requestBody")
        report = validate_token(token, expected_body=body, public_key=args.get("publicKey") or None)
        result: Dict[str, Any] = {
            "valid": report.valid,
            "header": report.header,
            "claims": report.claims,
            "checks": report.checks,
            "issues": report.issues,
        }
        if report.hash_check is not None:
            result["contentHash"] = {
                "field": report.hash_check.field,
                "provided": report.hash_check.provided,
                "calculated": report.hash_check.calculated,
                "matches": report.hash_check.matches,
                "canonicalBody": report.hash_check.canonical_body,
            }
        if report.signature_valid is not None:
            result["signatureValid"] = report.signature_valid
        status = "valid" if report.valid else "INVALID"
        return f"**JWT is {status}**\n\n" + _json_block(result)

    def _generate_rsa_keys(self, args: Dict[str, Any]) -> str:
        size = args.get("keySize") or 2048
        try:
            pair = generate_rsa_keypair(int(size))
        except ValueError as e:
            raise OperationError(str(e))
        return (
            f"**RSA key pair generated** ({pair.size} bits, {pair.generated_at})\n\n"
            "Register the public key with payware and keep the private key secret.\n\n"
            f"```\n{pair.public_key_pem.strip()}\n```\n\n"
            f"```\n{pair.private_key_pem.strip()}\n```"
        )

    def _format_json(self, args: Dict[str, Any]) -> str:
        if "data" not in args:
            raise OperationError("data is required")
        data = _parse_json_arg(args["data"], "data")
        body = canonical_json(data)
        result = {
            "canonical": body,
            "length": len(body.encode("utf-8")),
            HashProfile.SHA256.header_field: content_hash(body, HashProfile.SHA256),
            HashProfile.MD5.header_field: content_hash(body, HashProfile.MD5),
        }
        return "**Canonical JSON**\n\n" + _json_block(result)

    def _format_request(self, args: Dict[str, Any]) -> str:
        kind = args.get("type")
        if kind not in FORMAT_REQUEST_TYPES:
            raise OperationError(f"type must be one of {', '.join(FORMAT_REQUEST_TYPES)}")
        data = _parse_json_arg(args.get("data"), "data")
        profile = self.settings.hash_profile

        if kind == "transaction":
            operation = get_operation("payware_operations_create_transaction", self.settings.partner_type)
            body = request_body(operation, resolve_arguments(operation, data, self.settings))
            canonical = canonical_json(body)
            result = {
                "request": body,
                "canonicalBody": canonical,
                profile.header_field: content_hash(canonical, profile),
            }
            return "**Transaction request**\n\n" + _json_block(result)

        method = str(args.get("method") or "POST").upper()
        if method not in CURL_METHODS:
            raise OperationError(f"method must be one of {', '.join(CURL_METHODS)}")
        body = data if kind == "curl" and method in BODY_METHODS else None
        canonical = canonical_json(body) if body is not None else None

        token = args.get("jwtToken")
        if not token:
            token = sign(identity_from_settings(self.settings), body, hash_profile=profile).token
        headers = request_headers(token)

        if kind == "headers":
            return "**Request headers**\n\n" + _json_block(headers)

        endpoint = args.get("endpoint")
        if not endpoint:
            raise OperationError("endpoint is required for curl formatting")
        url = endpoint
        if not endpoint.startswith(("http://", "https://")):
            url = f"{self.settings.base_url()}/{endpoint.lstrip('/')}"
        return f"**curl command**\n\n```bash\n{format_curl(method, url, headers, canonical)}\n```"

    def _server_info(self, args: Dict[str, Any]) -> str:
        partner = PARTNER_TYPE_CONFIGS[self.settings.partner_type]
        result = {
            "name": SERVER_NAME,
            "version": __version__,
            "partner": partner["name"],
            "authType": partner["auth_type"],
            "capabilities": self.settings.capabilities,
            "configuration": self.settings.summary(),
            "tools": len(self._operations) + len(self._local),
        }
        return "**payware MCP server**\n\n" + _json_block(result)


# =============================================================================
# MCP Wiring
# =============================================================================


def create_server(toolbox: PaywareToolbox) -> Server:
    """Create the MCP server around ``toolbox``."""
    server = Server(SERVER_NAME)

    @server.list_tools()
    async def handle_list_tools() -> list[types.Tool]:
        return toolbox.list_tools()

    @server.call_tool()
    async def handle_call_tool(name: str, arguments: dict) -> list[types.TextContent]:
        # Signing and HTTP block; keep them off the event loop.
        text = await anyio.to_thread.run_sync(functools.partial(toolbox.call_tool, name, arguments))
        return [types.TextContent(type="text", text=text)]

    return server


async def run_server(settings: Settings) -> None:
    """Serve the payware tools over stdio until the client disconnects."""
    server = create_server(PaywareToolbox(settings))
    async with stdio_server() as (read_stream, write_stream):
        # The transport already holds its own stdout handle. Anything else
        # printed from here on, from any thread, goes to stderr.
        with contextlib.redirect_stdout(sys.stderr):
            logger.info(
                "payware MCP server %s running via stdio (%s, %s)",
                __version__,
                settings.partner_type.value,
                "sandbox" if settings.use_sandbox else "production",
            )
            await server.run(read_stream, write_stream, server.create_initialization_options())

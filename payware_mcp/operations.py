"""
Catalogue of payware API operations.

Every endpoint the server exposes is one ``Operation`` entry: its arguments,
where each argument goes (path, query string or JSON body), and the checks the
API would otherwise reject a request for. ``execute`` runs any entry through
the same path: resolve defaults, validate, render the URL, build the body,
sign and send through ``PaywareClient``.

Body arguments may name a dotted target (``trData.amount``); the body builder
nests them, so ``{"amount": "10.00"}`` becomes ``{"trData": {"amount": "10.00"}}``.
"""

from __future__ import annotations

import json
import logging
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import Decimal, InvalidOperation
from pathlib import Path
from string import Formatter
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional, Tuple
from urllib.parse import quote

from payware_mcp.client import PaywareClient
from payware_mcp.config import PartnerType, Settings, has_capability
from payware_mcp.errors import OperationError

logger = logging.getLogger(__name__)

# =============================================================================
# Constants
# =============================================================================

BODY = "body"
PATH = "path"
QUERY = "query"
UPLOAD = "upload"

BODY_METHODS = ("POST", "PUT", "PATCH")

TRANSACTION_TYPES = ("PLAIN", "QR", "BARCODE")
IMAGE_TYPES = ("QR", "BARCODE")
FINAL_STATUSES = ("CONFIRMED", "CANCELLED", "DECLINED", "FAILED")
CALLBACK_STATUSES = ("CONFIRMED", "DECLINED", "FAILED", "EXPIRED", "CANCELLED")
PRICE_CORRECTIONS = ("DISCOUNT", "INCREMENT")
CORRECTION_TYPES = ("PERCENTAGE", "VALUE")
EXPORT_FORMATS = ("pdf", "csv", "xlsx", "json")
LOCALES = ("en_US", "es_ES", "bg_BG")
FLAGS = ("TRUE", "FALSE")
ROLES = ("SRC", "DST")
PAYMENT_METHODS = ("A2A", "CARD_FUNDED", "BNPL", "INSTANT_CREDIT")
DELIVERY_ADDRESS_FIELDS = ("fullName", "streetAddressLine1", "zipCode", "city", "region", "country")

MAX_STATUS_MESSAGE_LENGTH = 100
MIN_TIME_TO_LIVE = 60
# Payment institutions may keep a transaction open for up to 30 days.
PI_MAX_TIME_TO_LIVE = 2592000

MERCHANT_PARTNERS = (PartnerType.MERCHANT, PartnerType.ISV)

CALLBACK_STATUS_MESSAGES = {
    "CONFIRMED": "Transaction confirmed",
    "DECLINED": "Insufficient funds",
    "FAILED": "Payment processing failed",
    "EXPIRED": "Transaction expired",
    "CANCELLED": "Transaction cancelled",
}


# =============================================================================
# Data Model
# =============================================================================


@dataclass(frozen=True)
class Param:
    """
    One tool argument.

    Attributes:
        name: Argument name as it appears in the tool input schema.
        description: Shown to the MCP client.
        type: JSON schema type.
        required: Reject the call when the argument is missing or empty.
        default: Value used when the argument is omitted.
        enum: Allowed values.
        location: ``body``, ``path``, ``query`` or ``upload`` (a local file path).
        target: Dotted body path; defaults to ``name``.
        setting: Settings attribute supplying the default (e.g. OAuth2 client id).
    """

    name: str
    description: str
    type: str = "string"
    required: bool = False
    default: Any = None
    enum: Optional[Tuple[str, ...]] = None
    location: str = BODY
    target: Optional[str] = None
    setting: Optional[str] = None

    def schema(self) -> Dict[str, Any]:
        schema: Dict[str, Any] = {"type": self.type, "description": self.description}
        if self.enum:
            schema["enum"] = list(self.enum)
        if self.default is not None:
            schema["default"] = self.default
        return schema


@dataclass(frozen=True)
class Operation:
    """
    One payware endpoint.

    Attributes:
        group: Tool family (``operations``, ``products``, ``poi``, ...).
        name: Operation name within the family.
        method: HTTP verb.
        path: Path template below the API base, e.g. ``/transactions/{transactionId}``.
        description: Tool description.
        capability: Partner capability required to see the tool.
        partner_types: Restrict the entry to these partner types. Payment
            institutions get their own variants of some tools under the same name.
        params: Operation arguments.
        production_only: Always call the production API.
        oauth2: Call the OAuth2 endpoints with the standard identity.
        upload: Argument holding a file path sent as multipart ``file``.
        prepare: Validates and normalizes the resolved arguments in place.
        build_body: Replaces the generic body builder.
        local: Handles the call without any HTTP request.
    """

    group: str
    name: str
    method: str
    path: str
    description: str
    capability: str
    params: Tuple[Param, ...] = ()
    partner_types: Optional[Tuple[PartnerType, ...]] = None
    production_only: bool = False
    oauth2: bool = False
    upload: Optional[str] = None
    prepare: Optional[Callable[[Dict[str, Any]], None]] = None
    build_body: Optional[Callable[[Dict[str, Any]], Any]] = None
    local: Optional[Callable[[Dict[str, Any]], Any]] = None

    @property
    def tool_name(self) -> str:
        return f"payware_{self.group}_{self.name}"

    def auth_params(self, partner_type: PartnerType) -> Tuple[Param, ...]:
        """Identity arguments every signed call accepts on top of its own."""
        if self.local is not None:
            return ()
        params = [
            Param("partnerId", "Partner ID (defaults to PAYWARE_PARTNER_ID)"),
            Param("privateKey", "RSA private key PEM (defaults to the configured key file)"),
        ]
        if not self.production_only:
            params.append(Param("useSandbox", "Call the sandbox instead of production", type="boolean"))
        if partner_type is PartnerType.ISV and not self.oauth2:
            params.append(Param("merchantId", "Merchant partner ID the ISV acts for"))
            params.append(Param("oauth2Token", "OAuth2 access token granted by the merchant", required=True))
        return tuple(params)

    def input_schema(self, partner_type: PartnerType = PartnerType.MERCHANT) -> Dict[str, Any]:
        params = self.params + self.auth_params(partner_type)
        schema: Dict[str, Any] = {
            "type": "object",
            "properties": {p.name: p.schema() for p in params},
        }
        required = [p.name for p in params if p.required and p.setting is None]
        if required:
            schema["required"] = required
        return schema


# =============================================================================
# Argument Helpers
# =============================================================================


def _is_empty(value: Any) -> bool:
    return value is None or value == ""


def _amount(args: Dict[str, Any], name: str, positive: bool = False) -> None:
    """Validate a money amount and store it as the string payware expects."""
    value = args.get(name)
    if _is_empty(value):
        return
    if isinstance(value, bool) or not isinstance(value, (str, int, float, Decimal)):
        raise OperationError(
            f"{name} must be a string or number representing a currency value (e.g. \"25.50\")"
        )
    try:
        parsed = Decimal(str(value).strip())
    except InvalidOperation:
        raise OperationError(f"{name} must be a valid number, got {value!r}")
    if not parsed.is_finite():
        raise OperationError(f"{name} must be a finite number")
    if positive and parsed <= 0:
        raise OperationError(f"{name} must be greater than 0")
    if parsed < 0:
        raise OperationError(f"{name} must be non-negative")
    args[name] = str(value).strip()


def _passback(args: Dict[str, Any]) -> None:
    value = args.get("passbackParams")
    if isinstance(value, Mapping):
        args["passbackParams"] = json.dumps(value, separators=(",", ":"), ensure_ascii=False)


def _image_options(args: Dict[str, Any], type_name: str) -> None:
    """Keep only the option block matching the requested image type."""
    image_type = args.get(type_name)
    for option, owner in (("qrOptions", "QR"), ("barOptions", "BARCODE")):
        if image_type != owner or not args.get(option):
            args.pop(option, None)


def _one_of(args: Dict[str, Any], name: str, allowed: Iterable[str]) -> None:
    value = args.get(name)
    if not _is_empty(value) and value not in allowed:
        raise OperationError(f"{name} must be one of {', '.join(allowed)} (got {value!r})")


def _time_to_live(args: Dict[str, Any], maximum: int) -> None:
    value = args.get("timeToLive")
    if _is_empty(value):
        return
    if isinstance(value, bool) or not isinstance(value, int):
        raise OperationError("timeToLive must be a whole number of seconds")
    if not MIN_TIME_TO_LIVE <= value <= maximum:
        raise OperationError(f"timeToLive must be between {MIN_TIME_TO_LIVE} and {maximum} seconds")


def _delivery_address(args: Dict[str, Any]) -> None:
    address = args.get("deliveryAddress")
    if _is_empty(address):
        return
    if not isinstance(address, Mapping):
        raise OperationError("deliveryAddress must be an object")
    missing = [name for name in DELIVERY_ADDRESS_FIELDS if _is_empty(address.get(name))]
    if missing:
        raise OperationError(f"deliveryAddress is missing {', '.join(missing)}")
    if _is_empty(address.get("phoneNumber")) and _is_empty(address.get("email")):
        raise OperationError("deliveryAddress needs a phoneNumber or an email")


def _require_file(name: str, label: str) -> Callable[[Dict[str, Any]], None]:
    """Prepare hook checking that the upload argument ``name`` is a readable file."""

    def check(args: Dict[str, Any]) -> None:
        if not Path(args[name]).expanduser().is_file():
            raise OperationError(f"{label} file not found: {args[name]}")

    return check


def _set_path(body: Dict[str, Any], dotted: str, value: Any) -> None:
    *parents, leaf = dotted.split(".")
    node = body
    for part in parents:
        node = node.setdefault(part, {})
    node[leaf] = value


def build_body(params: Iterable[Param], args: Mapping[str, Any]) -> Dict[str, Any]:
    """
    Assemble a JSON body from the body arguments that carry a value.

    Example:
        >>> build_body([Param("amount", "", target="trData.amount")], {"amount": "1.00"})
        {'trData': {'amount': '1.00'}}
    """
    body: Dict[str, Any] = {}
    for param in params:
        if param.location != BODY:
            continue
        value = args.get(param.name)
        if _is_empty(value):
            continue
        _set_path(body, param.target or param.name, value)
    return body


def render_path(template: str, args: Mapping[str, Any]) -> str:
    """Substitute URL-quoted path arguments into ``template``."""
    values = {}
    for _, field_name, _, _ in Formatter().parse(template):
        if field_name is None:
            continue
        value = args.get(field_name)
        if _is_empty(value):
            raise OperationError(f"{field_name} is required")
        # Report ids are published with a leading slash ("/processedTransactions").
        values[field_name] = quote(str(value).strip("/"), safe="")
    return template.format(**values)


# =============================================================================
# Operation-Specific Rules
# =============================================================================


def _prepare_create_transaction(args: Dict[str, Any]) -> None:
    _amount(args, "amount")
    _one_of(args, "type", TRANSACTION_TYPES)
    _passback(args)
    _image_options(args, "type")


def _prepare_process_transaction(args: Dict[str, Any]) -> None:
    if _is_empty(args.get("amount")):
        raise OperationError("amount is required")
    _amount(args, "amount", positive=True)
    _passback(args)


def _prepare_create_pi_transaction(args: Dict[str, Any]) -> None:
    _prepare_create_transaction(args)
    _time_to_live(args, PI_MAX_TIME_TO_LIVE)


def _pi_transaction_body(args: Dict[str, Any]) -> Dict[str, Any]:
    body = build_body(PI_CREATE_PARAMS, args)
    # Without an amount the payer picks it; trData is then left out entirely.
    if _is_empty(args.get("amount")):
        body.pop("trData", None)
    return body


def _prepare_process_pi_transaction(args: Dict[str, Any]) -> None:
    _amount(args, "amount", positive=True)
    _time_to_live(args, PI_MAX_TIME_TO_LIVE)
    _passback(args)
    _delivery_address(args)


def _prepare_cancel_transaction(args: Dict[str, Any]) -> None:
    message = args.get("statusMessage")
    if not isinstance(message, str):
        raise OperationError("statusMessage must be a string")
    if len(message) > MAX_STATUS_MESSAGE_LENGTH:
        raise OperationError(
            f"statusMessage must be at most {MAX_STATUS_MESSAGE_LENGTH} characters"
        )


def _cancel_transaction_body(args: Dict[str, Any]) -> Dict[str, Any]:
    return {"status": "CANCELLED", "statusMessage": args["statusMessage"]}


def _prepare_finalize_transaction(args: Dict[str, Any]) -> None:
    _one_of(args, "status", FINAL_STATUSES)
    if args.get("status") == "CONFIRMED":
        for name in ("amount", "currency", "fee"):
            if _is_empty(args.get(name)):
                raise OperationError(f"{name} is required when status is CONFIRMED")
        _amount(args, "amount")
        _amount(args, "fee")


def _finalize_transaction_body(args: Dict[str, Any]) -> Dict[str, Any]:
    body: Dict[str, Any] = {"status": args["status"]}
    if args.get("statusMessage"):
        body["statusMessage"] = args["statusMessage"]
    if args["status"] == "CONFIRMED":
        body["amount"] = args["amount"]
        body["fee"] = args["fee"]
        body["currency"] = args["currency"]
    return body


def _prepare_set_price(args: Dict[str, Any]) -> None:
    _amount(args, "amount")
    args["currency"] = str(args.get("currency") or "EUR").upper()
    _passback(args)


def _prepare_product_image(args: Dict[str, Any]) -> None:
    _one_of(args, "type", IMAGE_TYPES)
    _image_options(args, "type")


def _prepare_schedule(args: Dict[str, Any]) -> None:
    _one_of(args, "priceCorrection", PRICE_CORRECTIONS)
    _one_of(args, "correctionType", CORRECTION_TYPES)
    _amount(args, "correctionValue")


def _prepare_generate_report(args: Dict[str, Any]) -> None:
    _one_of(args, "locale", LOCALES)


def _prepare_export_report(args: Dict[str, Any]) -> None:
    _one_of(args, "outputFormat", EXPORT_FORMATS)


def _prepare_oauth2_token(args: Dict[str, Any]) -> None:
    if args.get("grantType") != "client_credentials":
        raise OperationError('Only the "client_credentials" grant type is supported')


def simulate_callback(args: Dict[str, Any], now: Optional[float] = None) -> Dict[str, Any]:
    """
    Build the callback payload payware would POST for a finalized transaction.

    The fee is the difference between the payer (or payee) amount and the
    transaction amount. Nothing is sent anywhere.
    """
    status = args.get("status") or "CONFIRMED"
    if status not in CALLBACK_STATUSES:
        raise OperationError(f"status must be one of {', '.join(CALLBACK_STATUSES)}")
    _amount(args, "amount")
    _amount(args, "payerAmount")
    _amount(args, "payeeAmount")

    amount = Decimal(args.get("amount") or "0")
    fee = Decimal("0.00")
    if not _is_empty(args.get("payerAmount")):
        fee = abs(Decimal(args["payerAmount"]) - amount)
    elif not _is_empty(args.get("payeeAmount")):
        fee = abs(Decimal(args["payeeAmount"]) - amount)

    millis = int((time.time() if now is None else now) * 1000)
    payload: Dict[str, Any] = {
        "callbackType": "TRANSACTION_FINALIZED",
        "transactionId": args["transactionId"],
        "passbackParams": args.get("passbackParams"),
        "amount": args.get("amount") or "0.00",
        "fee": f"{fee.quantize(Decimal('0.01'))}",
        "currency": args.get("currency") or "EUR",
        "status": status,
        "statusMessage": args.get("statusMessage") or CALLBACK_STATUS_MESSAGES[status],
        "created": millis - 300000,
    }
    if args.get("paymentMethod"):
        payload["paymentMethod"] = args["paymentMethod"]
    if status != "EXPIRED":
        payload["finalized"] = millis

    callback_url = args.get("callbackUrl")
    result: Dict[str, Any] = {"payload": payload, "simulated": True}
    if callback_url:
        if not str(callback_url).startswith("http"):
            raise OperationError("callbackUrl must be an http(s) URL")
        result["url"] = callback_url
        result["simulatedAt"] = datetime.fromtimestamp(millis / 1000, tz=timezone.utc).isoformat()
    return result


# =============================================================================
# Catalogue
# =============================================================================


def _id(name: str, description: str) -> Param:
    return Param(name, description, required=True, location=PATH)


TRANSACTION_ID = _id("transactionId", "Transaction ID (starts with 'pw')")
PRODUCT_ID = _id("productId", "Product ID (starts with 'pr')")
SCHEDULE_ID = _id("scheduleId", "Schedule ID")
AUDIO_ID = _id("audioId", "Audio ID")
POI_ID = _id("poiId", "Point of interaction ID")
REQUEST_ID = _id("requestId", "Report request ID returned by generate_report")
EXPORT_ID = _id("exportId", "Export ID returned by export_report")

PASSBACK = Param("passbackParams", "Opaque data echoed back in the callback (object or string)", type="object")
CALLBACK_URL = Param("callbackUrl", "URL payware notifies when the transaction is finalized")
QR_OPTIONS = Param("qrOptions", "QR code rendering options (type QR only)", type="object")
BAR_OPTIONS = Param("barOptions", "Barcode rendering options (type BARCODE only)", type="object")

PI_CREATE_PARAMS = (
    Param("role", "SRC when the account pays, DST when it receives", required=True, enum=ROLES),
    Param("account", "Unique identifier of the account, e.g. an IBAN", required=True),
    Param("friendlyName", "Account holder name", required=True),
    Param("amount", "Amount, e.g. '25.50'; omit to let the payer choose", target="trData.amount"),
    Param("currency", "ISO 4217 currency code", required=True, default="EUR", target="trData.currency"),
    Param("reasonL1", "Transaction grounds, first line", target="trData.reasonL1"),
    Param("reasonL2", "Transaction grounds, second line", target="trData.reasonL2"),
    Param("type", "Transaction type", default="PLAIN", enum=TRANSACTION_TYPES, target="trOptions.type"),
    Param("timeToLive", "Seconds until the transaction expires (60 to 2592000)", type="integer", default=120,
          target="trOptions.timeToLive"),
    CALLBACK_URL,
    PASSBACK,
    QR_OPTIONS,
    BAR_OPTIONS,
)

PRODUCT_FIELDS = (
    Param("shortDescription", "Short product description"),
    Param("longDescription", "Long product description"),
    Param("sku", "Stock keeping unit"),
    Param("upc", "Universal product code"),
    Param("shop", "Shop the product belongs to"),
    Param("prData", "Product pricing data (amount, currency, reasonL1, ...)", type="object"),
    Param("prOptions", "Product options (type, timeToLive, ...)", type="object"),
)

SCHEDULE_FIELDS = (
    Param("description", "Schedule description"),
    Param("dateFrom", "Start of the schedule (ISO 8601)"),
    Param("dateTo", "End of the schedule (ISO 8601)"),
)

OPERATIONS: Tuple[Operation, ...] = (
    # -- Transactions ---------------------------------------------------------
    Operation(
        "operations", "create_transaction", "POST", "/transactions",
        "Create a payment transaction (PLAIN, QR or BARCODE).",
        capability="transactions",
        partner_types=MERCHANT_PARTNERS,
        params=(
            Param("reasonL1", "Transaction grounds, first line", required=True, target="trData.reasonL1"),
            Param("amount", "Amount, e.g. '25.50'", default="0.00", target="trData.amount"),
            Param("currency", "ISO 4217 currency code", default="EUR", target="trData.currency"),
            Param("reasonL2", "Transaction grounds, second line", target="trData.reasonL2"),
            Param("type", "Transaction type", default="PLAIN", enum=TRANSACTION_TYPES, target="trOptions.type"),
            Param("timeToLive", "Seconds until the transaction expires", type="integer", default=120,
                  target="trOptions.timeToLive"),
            Param("account", "Payee account"),
            Param("friendlyName", "Payee name shown to the payer"),
            Param("shop", "Shop identifier"),
            CALLBACK_URL,
            PASSBACK,
            QR_OPTIONS,
            BAR_OPTIONS,
        ),
        prepare=_prepare_create_transaction,
    ),
    Operation(
        "operations", "get_transaction_status", "GET", "/transactions/{transactionId}",
        "Get the current status of a transaction.",
        capability="transactions",
        params=(TRANSACTION_ID,),
    ),
    Operation(
        "operations", "process_transaction", "POST", "/transactions/{transactionId}",
        "Process (pay) an existing transaction as the payer.",
        capability="transactions",
        partner_types=MERCHANT_PARTNERS,
        params=(
            TRANSACTION_ID,
            Param("amount", "Amount to pay, must be positive", required=True, target="trData.amount"),
            Param("currency", "ISO 4217 currency code", default="EUR", target="trData.currency"),
            Param("reasonL1", "Transaction grounds, first line", required=True, target="trData.reasonL1"),
            Param("reasonL2", "Transaction grounds, second line", target="trData.reasonL2"),
            Param("timeToLive", "Seconds until the transaction expires", type="integer", default=120,
                  target="trOptions.timeToLive"),
            Param("account", "Payer account"),
            Param("friendlyName", "Payer name"),
            Param("shop", "Shop identifier"),
            Param("paymentMethod", "Payment method used"),
            CALLBACK_URL,
            PASSBACK,
        ),
        prepare=_prepare_process_transaction,
    ),
    Operation(
        "operations", "create_transaction", "POST", "/transactions",
        "Create a transaction as a payment institution, as payer (SRC) or payee (DST) of the account.",
        capability="pi_transactions",
        params=PI_CREATE_PARAMS,
        prepare=_prepare_create_pi_transaction,
        build_body=_pi_transaction_body,
    ),
    Operation(
        "operations", "process_transaction", "POST", "/transactions/{transactionId}",
        "Process a transaction created elsewhere, on behalf of one of the institution's accounts.",
        capability="pi_transactions",
        params=(
            TRANSACTION_ID,
            Param("account", "Account identifier", required=True),
            Param("friendlyName", "Account holder name", required=True),
            Param("amount", "Amount to process, must be positive", target="trData.amount"),
            Param("currency", "ISO 4217 currency code", required=True, target="trData.currency"),
            Param("reasonL1", "Transaction grounds, first line", required=True, target="trData.reasonL1"),
            Param("reasonL2", "Transaction grounds, second line", target="trData.reasonL2"),
            Param("timeToLive", "Seconds allowed for finalization (60 to 2592000)", type="integer",
                  target="trOptions.timeToLive"),
            Param("paymentMethod", "Payment method chosen by the customer (POI transactions)",
                  enum=PAYMENT_METHODS),
            Param("deliveryAddress", "Delivery address for shippable transactions: fullName, "
                  "streetAddressLine1, zipCode, city, region, country and a phoneNumber or email",
                  type="object"),
            CALLBACK_URL,
            PASSBACK,
        ),
        prepare=_prepare_process_pi_transaction,
    ),
    Operation(
        "operations", "soundbite_transaction", "POST", "/transactions",
        "Look up a transaction from a Soundbite SDK output file.",
        capability="pi_transactions",
        params=(
            Param("filePath", "Path of the Soundbite SDK output file (usually .lo)", required=True,
                  location=UPLOAD),
        ),
        upload="filePath",
        prepare=_require_file("filePath", "Soundbite"),
    ),
    Operation(
        "operations", "cancel_transaction", "PATCH", "/transactions/{transactionId}",
        "Cancel an active transaction.",
        capability="transactions",
        params=(
            TRANSACTION_ID,
            Param("statusMessage", "Reason for cancelling (max 100 characters)", required=True),
        ),
        prepare=_prepare_cancel_transaction,
        build_body=_cancel_transaction_body,
    ),
    Operation(
        "operations", "finalize_transaction", "PATCH", "/transactions/{transactionId}",
        "Finalize a transaction as the payment institution.",
        capability="pi_transactions",
        params=(
            TRANSACTION_ID,
            Param("status", "Final status", required=True, enum=FINAL_STATUSES),
            Param("statusMessage", "Status details"),
            Param("amount", "Confirmed amount (required for CONFIRMED)"),
            Param("currency", "Currency (required for CONFIRMED)"),
            Param("fee", "Fee charged (required for CONFIRMED)"),
        ),
        prepare=_prepare_finalize_transaction,
        build_body=_finalize_transaction_body,
    ),
    Operation(
        "operations", "get_transaction_history", "GET", "/transactions-history/{transactionId}",
        "Get the status history of a transaction.",
        capability="transactions",
        params=(TRANSACTION_ID,),
    ),
    Operation(
        "operations", "simulate_callback", "POST", "",
        "Build the callback payload payware would send for a transaction (no request is made).",
        capability="transactions",
        params=(
            Param("transactionId", "Transaction ID", required=True),
            Param("status", "Simulated final status", default="CONFIRMED", enum=CALLBACK_STATUSES),
            Param("amount", "Transaction amount", default="0.00"),
            Param("currency", "Currency", default="EUR"),
            Param("payerAmount", "Amount charged to the payer"),
            Param("payeeAmount", "Amount credited to the payee"),
            Param("statusMessage", "Status message (defaults per status)"),
            Param("paymentMethod", "Payment method"),
            Param("passbackParams", "Passback parameters echoed in the callback"),
            CALLBACK_URL,
        ),
        local=simulate_callback,
    ),
    # -- Products -------------------------------------------------------------
    Operation(
        "products", "list_products", "GET", "/products",
        "List all products.",
        capability="products",
    ),
    Operation(
        "products", "get_product", "GET", "/products/{productId}",
        "Get product details.",
        capability="products",
        params=(PRODUCT_ID,),
    ),
    Operation(
        "products", "create_product", "POST", "/products",
        "Create a product.",
        capability="products",
        params=(
            Param("name", "Product name", required=True),
            Param("shippable", "Whether the product ships", default="FALSE", enum=FLAGS),
            Param("active", "Whether the product is active", default="FALSE", enum=FLAGS),
        ) + PRODUCT_FIELDS,
    ),
    Operation(
        "products", "update_product", "PATCH", "/products/{productId}",
        "Update product fields.",
        capability="products",
        params=(
            PRODUCT_ID,
            Param("name", "Product name"),
            Param("shippable", "Whether the product ships", enum=FLAGS),
            Param("active", "Whether the product is active", enum=FLAGS),
        ) + PRODUCT_FIELDS,
    ),
    Operation(
        "products", "delete_product", "DELETE", "/products/{productId}",
        "Delete a product.",
        capability="products",
        params=(PRODUCT_ID,),
    ),
    Operation(
        "products", "get_product_image", "POST", "/products/{productId}/image",
        "Render the product's QR code or barcode image.",
        capability="products",
        params=(
            PRODUCT_ID,
            Param("type", "Image type", default="QR", enum=IMAGE_TYPES),
            QR_OPTIONS,
            BAR_OPTIONS,
        ),
        prepare=_prepare_product_image,
    ),
    Operation(
        "products", "get_schedules", "GET", "/products/{productId}/schedules",
        "List price schedules of a product.",
        capability="products",
        params=(PRODUCT_ID,),
    ),
    Operation(
        "products", "get_schedule", "GET", "/products/{productId}/schedules/{scheduleId}",
        "Get one price schedule.",
        capability="products",
        params=(PRODUCT_ID, SCHEDULE_ID),
    ),
    Operation(
        "products", "create_schedule", "POST", "/products/{productId}/schedules",
        "Create a price schedule (discount or increment) for a product.",
        capability="products",
        params=(
            PRODUCT_ID,
            Param("priceCorrection", "Direction of the correction", default="DISCOUNT", enum=PRICE_CORRECTIONS),
            Param("correctionType", "How the correction is applied", default="PERCENTAGE", enum=CORRECTION_TYPES),
            Param("correctionValue", "Correction amount or percentage", default="0.00"),
        ) + SCHEDULE_FIELDS,
        prepare=_prepare_schedule,
    ),
    Operation(
        "products", "update_schedule", "PATCH", "/products/{productId}/schedules/{scheduleId}",
        "Update a price schedule.",
        capability="products",
        params=(
            PRODUCT_ID,
            SCHEDULE_ID,
            Param("priceCorrection", "Direction of the correction", enum=PRICE_CORRECTIONS),
            Param("correctionType", "How the correction is applied", enum=CORRECTION_TYPES),
            Param("correctionValue", "Correction amount or percentage"),
        ) + SCHEDULE_FIELDS,
        prepare=_prepare_schedule,
    ),
    Operation(
        "products", "delete_schedule", "DELETE", "/products/{productId}/schedules/{scheduleId}",
        "Delete a price schedule.",
        capability="products",
        params=(PRODUCT_ID, SCHEDULE_ID),
    ),
    Operation(
        "products", "get_audios", "GET", "/products/{productId}/audios",
        "List the soundbites registered for a product.",
        capability="products",
        params=(PRODUCT_ID,),
    ),
    Operation(
        "products", "get_audio", "GET", "/products/{productId}/audios/{audioId}",
        "Get one soundbite.",
        capability="products",
        params=(PRODUCT_ID, AUDIO_ID),
    ),
    Operation(
        "products", "register_audio", "POST", "/products/{productId}/audios/upload",
        "Upload an audio file as a product soundbite.",
        capability="products",
        params=(
            PRODUCT_ID,
            Param("audioPath", "Path of the audio file to upload", required=True, location=UPLOAD),
        ),
        upload="audioPath",
        prepare=_require_file("audioPath", "Audio"),
    ),
    Operation(
        "products", "update_audio", "PATCH", "/products/{productId}/audios/{audioId}",
        "Rename a soundbite or move it to another product.",
        capability="products",
        params=(
            PRODUCT_ID,
            AUDIO_ID,
            Param("title", "Soundbite title"),
            Param("newProductId", "Product to move the soundbite to", target="productId"),
        ),
    ),
    Operation(
        "products", "delete_audio", "DELETE", "/products/{productId}/audios/{audioId}",
        "Delete a soundbite.",
        capability="products",
        params=(PRODUCT_ID, AUDIO_ID),
    ),
    # -- Points of interaction ------------------------------------------------
    Operation(
        "poi", "list", "GET", "/poi",
        "List points of interaction.",
        capability="poi",
    ),
    Operation(
        "poi", "get", "GET", "/poi/{poiId}",
        "Get a point of interaction.",
        capability="poi",
        params=(POI_ID,),
    ),
    Operation(
        "poi", "get_status", "GET", "/poi/{poiId}/status",
        "Get the status of a point of interaction.",
        capability="poi",
        params=(POI_ID,),
    ),
    Operation(
        "poi", "get_qrcode", "GET", "/poi/{poiId}/image",
        "Get the QR code image of a point of interaction.",
        capability="poi",
        params=(POI_ID, Param("format", "Image format", default="PNG", location=QUERY)),
    ),
    Operation(
        "poi", "set_price", "PUT", "/poi/{poiId}/price",
        "Set the price a point of interaction charges.",
        capability="poi",
        params=(
            POI_ID,
            Param("amount", "Amount, e.g. '4.50'", required=True),
            Param("currency", "ISO 4217 currency code", default="EUR"),
            Param("reasonL1", "Payment grounds, first line", required=True),
            Param("reasonL2", "Payment grounds, second line"),
            Param("timeToLive", "Seconds the price stays active", type="integer"),
            CALLBACK_URL,
            PASSBACK,
        ),
        prepare=_prepare_set_price,
    ),
    Operation(
        "poi", "cancel_price", "DELETE", "/poi/{poiId}/price",
        "Remove the price from a point of interaction.",
        capability="poi",
        params=(POI_ID,),
    ),
    # -- Data retrieval -------------------------------------------------------
    Operation(
        "data", "generate_report", "POST", "/data-retrieval",
        "Request a report, e.g. reportUnitId '/processedTransactions'.",
        capability="data",
        production_only=True,
        params=(
            Param("reportUnitId", "Report type, e.g. '/processedTransactionsMTD'", required=True),
            Param("ignorePagination", "Return all rows in one page", type="boolean", default=False),
            Param("locale", "Report locale", default="en_US", enum=LOCALES),
            Param("timeZone", "Time zone for dates", default="GMT"),
            Param("dateFrom", "Start date (YYYY-MM-DD)"),
            Param("dateTo", "End date (YYYY-MM-DD)"),
        ),
        prepare=_prepare_generate_report,
    ),
    Operation(
        "data", "get_report_status", "GET", "/data-retrieval/request/{requestId}/status",
        "Get the status of a report request.",
        capability="data",
        production_only=True,
        params=(REQUEST_ID,),
    ),
    Operation(
        "data", "export_report", "POST", "/data-retrieval/request/{requestId}/export/{outputFormat}",
        "Export a READY report as PDF, CSV, Excel or JSON.",
        capability="data",
        production_only=True,
        params=(
            REQUEST_ID,
            Param("outputFormat", "Export format", required=True, enum=EXPORT_FORMATS, location=PATH),
        ),
        prepare=_prepare_export_report,
    ),
    Operation(
        "data", "get_export_status", "GET", "/data-retrieval/export/{exportId}/status",
        "Get the status of an export.",
        capability="data",
        production_only=True,
        params=(EXPORT_ID,),
    ),
    Operation(
        "data", "download_export", "GET", "/data-retrieval/export/{exportId}/download",
        "Download a finished export.",
        capability="data",
        production_only=True,
        params=(EXPORT_ID,),
    ),
    Operation(
        "data", "cancel_report", "PUT", "/data-retrieval/{requestId}/cancel",
        "Cancel a pending report request.",
        capability="data",
        production_only=True,
        params=(REQUEST_ID,),
    ),
    Operation(
        "data", "cancel_export", "PUT", "/data-retrieval/{exportId}/cancel",
        "Cancel a pending export.",
        capability="data",
        production_only=True,
        params=(EXPORT_ID,),
    ),
    Operation(
        "data", "list_reports", "GET", "/data-retrieval/reports",
        "List the report types available to the partner.",
        capability="data",
        production_only=True,
    ),
    Operation(
        "data", "get_report_requests", "GET", "/data-retrieval/{reportId}",
        "List requests made for one report type.",
        capability="data",
        production_only=True,
        params=(_id("reportId", "Report type, e.g. '/processedTransactions'"),),
    ),
    Operation(
        "data", "get_export_list", "GET", "/data-retrieval/exports/{requestId}",
        "List exports made from a report request.",
        capability="data",
        production_only=True,
        params=(REQUEST_ID,),
    ),
    # -- Deep links -----------------------------------------------------------
    Operation(
        "deep_links", "get_transaction_link", "GET", "/transactions/{transactionId}/link",
        "Get the deep link that opens a transaction in a payware app.",
        capability="deep_links",
        production_only=True,
        params=(TRANSACTION_ID,),
    ),
    Operation(
        "deep_links", "delete_transaction_link", "DELETE", "/transactions/{transactionId}/link",
        "Delete a transaction deep link.",
        capability="deep_links",
        production_only=True,
        params=(TRANSACTION_ID,),
    ),
    Operation(
        "deep_links", "get_product_link", "GET", "/products/{productId}/link",
        "Get the deep link that opens a product in a payware app.",
        capability="deep_links",
        production_only=True,
        params=(PRODUCT_ID,),
    ),
    Operation(
        "deep_links", "delete_product_link", "DELETE", "/products/{productId}/link",
        "Delete a product deep link.",
        capability="deep_links",
        production_only=True,
        params=(PRODUCT_ID,),
    ),
    # -- OAuth2 (ISV) ---------------------------------------------------------
    Operation(
        "authorization", "oauth2_obtain_token", "POST", "/oauth2/tokens",
        "Obtain an OAuth2 access token with the client credentials grant.",
        capability="oauth2",
        oauth2=True,
        params=(
            Param("grantType", "OAuth2 grant type", default="client_credentials", enum=("client_credentials",)),
            Param("clientId", "OAuth2 client id (defaults to PAYWARE_OAUTH_CLIENT_ID)", required=True,
                  setting="oauth_client_id"),
            Param("clientSecret", "OAuth2 client secret (defaults to PAYWARE_OAUTH_CLIENT_SECRET)", required=True,
                  setting="oauth_client_secret"),
        ),
        prepare=_prepare_oauth2_token,
    ),
    Operation(
        "authorization", "oauth2_get_token_info", "GET", "/oauth2/tokens/{token}",
        "Get scope and expiry of an OAuth2 access token.",
        capability="oauth2",
        oauth2=True,
        params=(_id("token", "OAuth2 access token"),),
    ),
)


def available_operations(partner_type: PartnerType) -> List[Operation]:
    """Operations the partner type is allowed to call, at most one per tool name."""
    return [
        op for op in OPERATIONS
        if has_capability(partner_type, op.capability)
        and (op.partner_types is None or partner_type in op.partner_types)
    ]


def get_operation(tool_name: str, partner_type: Optional[PartnerType] = None) -> Operation:
    """
    Look up an operation by tool name.

    Without a partner type the first entry of that name is returned, which is
    the merchant variant where payment institutions have their own.
    """
    candidates = OPERATIONS if partner_type is None else available_operations(partner_type)
    for op in candidates:
        if op.tool_name == tool_name:
            return op
    raise OperationError(f"Unknown operation: {tool_name}")


# =============================================================================
# Executor
# =============================================================================


def resolve_arguments(
    operation: Operation,
    arguments: Optional[Mapping[str, Any]],
    settings: Optional[Settings] = None,
) -> Dict[str, Any]:
    """
    Apply defaults, check required arguments and run the operation's own rules.

    Raises:
        OperationError: If an argument is missing or invalid.
    """
    args = dict(arguments or {})
    for param in operation.params:
        if not _is_empty(args.get(param.name)):
            continue
        if param.setting and settings is not None:
            args[param.name] = getattr(settings, param.setting)
        if _is_empty(args.get(param.name)) and param.default is not None:
            args[param.name] = param.default
        if param.required and _is_empty(args.get(param.name)):
            raise OperationError(f"{param.name} is required")
    for param in operation.params:
        if param.enum:
            _one_of(args, param.name, param.enum)
    if operation.prepare is not None:
        operation.prepare(args)
    return args


def request_body(operation: Operation, args: Mapping[str, Any]) -> Any:
    """The JSON body for resolved ``args``, or None for methods without one."""
    if operation.build_body is not None:
        return operation.build_body(dict(args))
    if operation.method in BODY_METHODS:
        return build_body(operation.params, args)
    return None


def _identity_overrides(args: Mapping[str, Any]) -> Dict[str, Any]:
    return {
        "partner_id": args.get("partnerId") or None,
        "private_key": args.get("privateKey") or None,
        "merchant_id": args.get("merchantId") or None,
        "oauth2_token": args.get("oauth2Token") or None,
    }


def execute(operation: Operation, arguments: Optional[Mapping[str, Any]], client: PaywareClient) -> Any:
    """
    Run ``operation`` with tool ``arguments``.

    Returns:
        The ``ApiResponse`` of the call, or the local handler's result for
        operations that make no request.

    Raises:
        OperationError: Invalid arguments.
        ApiError, ConfigurationError, KeyLoadError: From the client.
    """
    args = resolve_arguments(operation, arguments, client.settings)
    if operation.local is not None:
        return operation.local(args)

    path = render_path(operation.path, args)
    params = {p.name: args.get(p.name) for p in operation.params if p.location == QUERY}
    body = request_body(operation, args)

    use_sandbox = False if operation.production_only else args.get("useSandbox")
    logger.debug("Executing %s", operation.tool_name)

    request = dict(
        body=body,
        use_sandbox=use_sandbox,
        oauth2=operation.oauth2,
        **_identity_overrides(args),
    )
    if operation.upload is None:
        return client.request(operation.method, path, params=params, **request)

    upload_path = Path(args[operation.upload]).expanduser()
    with upload_path.open("rb") as fh:
        return client.request(
            operation.method, path, params=params, files={"file": (upload_path.name, fh)}, **request
        )

import base64
import binascii
import json
from typing import Any, Union

from pydantic import ValidationError

from .exceptions import MalformedPayload
from .types import PaymentPayload, SettleResponse, VerifyResponse


def safe_base64_encode(data: Union[str, bytes]) -> str:
    """Safely encode string or bytes to base64 string.

    Args:
        data: String or bytes to encode

    Returns:
        Base64 encoded string
    """
    if isinstance(data, str):
        data = data.encode("utf-8")
    return base64.b64encode(data).decode("utf-8")


def safe_base64_decode(data: str) -> str:
    """Safely decode base64 string to bytes and then to utf-8 string.

    Args:
        data: Base64 encoded string

    Returns:
        Decoded utf-8 string

    Raises:
        ValueError: If the input is not valid base64 or not utf-8
    """
    try:
        return base64.b64decode(data, validate=True).decode("utf-8")
    except (binascii.Error, UnicodeDecodeError) as e:
        raise ValueError(f"Invalid base64 data: {e}") from e


def canonical_amount(amount: Union[int, str]) -> str:
    """Render an amount as a decimal-string integer.

    Floats are refused: amounts are always whole smallest-unit counts.
    """
    if isinstance(amount, bool) or not isinstance(amount, (int, str)):
        raise ValueError(f"Amount must be an int or integer string, got {type(amount).__name__}")
    value = int(amount)
    if value < 0:
        raise ValueError("Amount must not be negative")
    return str(value)


def encode_payment(payment: PaymentPayload) -> str:
    """Encode a payment payload to the X-PAYMENT header value.

    Args:
        payment: Payment payload

    Returns:
        Base64 encoded JSON
    """
    return safe_base64_encode(payment.model_dump_json(by_alias=True, exclude_none=True))


def decode_payment(header: str) -> PaymentPayload:
    """Decode an X-PAYMENT header value.

    Only the envelope is validated here; the scheme-specific ``payload`` is
    parsed by the scheme registered for the payload's (scheme, network).

    Args:
        header: Base64 encoded payment header

    Returns:
        Decoded PaymentPayload

    Raises:
        MalformedPayload: If the header is not base64, not JSON, or not a
            payment envelope
    """
    try:
        data: Any = json.loads(safe_base64_decode(header))
    except (ValueError, json.JSONDecodeError) as e:
        raise MalformedPayload(f"Invalid payment header format: {e}") from e

    if not isinstance(data, dict):
        raise MalformedPayload("Payment header must encode a JSON object")

    try:
        return PaymentPayload.model_validate(data)
    except ValidationError as e:
        raise MalformedPayload(f"Invalid payment payload: {e}") from e


def encode_settle_response(response: Union[SettleResponse, VerifyResponse]) -> str:
    """Encode a settlement (or deferred verify confirmation) for X-PAYMENT-RESPONSE."""
    return safe_base64_encode(response.model_dump_json(by_alias=True, exclude_none=True))


def decode_settle_response(header: str) -> Union[SettleResponse, VerifyResponse]:
    """Decode an X-PAYMENT-RESPONSE header value.

    Returns:
        SettleResponse, or VerifyResponse when the server settles in the
        background and only confirmed verification

    Raises:
        MalformedPayload: If the header cannot be decoded
    """
    try:
        data: Any = json.loads(safe_base64_decode(header))
    except (ValueError, json.JSONDecodeError) as e:
        raise MalformedPayload(f"Invalid payment response header: {e}") from e

    if not isinstance(data, dict):
        raise MalformedPayload("Payment response header must encode a JSON object")

    model = VerifyResponse if "isValid" in data else SettleResponse
    try:
        return model.model_validate(data)
    except ValidationError as e:
        raise MalformedPayload(f"Invalid payment response header: {e}") from e

"""HTTP header names and defaults for the x402 protocol."""

# Request headers
PAYMENT_HEADER = "X-PAYMENT"
PREFERRED_TOKEN_HEADER = "X-PREFERRED-TOKEN"
PREFERRED_NETWORK_HEADER = "X-PREFERRED-NETWORK"

# Response headers
PAYMENT_RESPONSE_HEADER = "X-PAYMENT-RESPONSE"
EXPOSE_HEADERS_HEADER = "Access-Control-Expose-Headers"

# Facilitator defaults
DEFAULT_FACILITATOR_URL = "https://x402.org/facilitator"
DEFAULT_FACILITATOR_TIMEOUT = 30.0
DEFAULT_QUOTE_PATH = "/quote"

# HTTP status codes used by the resource server
HTTP_STATUS_BAD_REQUEST = 400
HTTP_STATUS_PAYMENT_REQUIRED = 402
HTTP_STATUS_BAD_GATEWAY = 502

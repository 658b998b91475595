"""
Constants for the APNs provider API.
"""

# Default APNs origins (Settings may override them)
APNS_PRODUCTION_URL = "https://api.push.apple.com"
APNS_SANDBOX_URL = "https://api.development.push.apple.com"

# APNs API path
APNS_DEVICE_PATH = "/3/device/{device_token}"

# Request / response headers
HEADER_CONTENT_TYPE = "content-type"
HEADER_AUTHORIZATION = "authorization"
HEADER_APNS_TOPIC = "apns-topic"
HEADER_APNS_ID = "apns-id"
CONTENT_TYPE_JSON = "application/json"

# JWT configuration
JWT_ALGORITHM = "ES256"

# P-256 sizes
P256_SCALAR_LENGTH = 32
X963_PRIVATE_KEY_LENGTH = 1 + 3 * P256_SCALAR_LENGTH  # 0x04 || X || Y || d
P256_ORDER = 0xFFFFFFFF00000000FFFFFFFFFFFFFFFFBCE6FAADA7179E84F3B9CAC2FC632551

# DER OCTET STRING announcing exactly 32 bytes
PKCS8_SCALAR_MARKER = b"\x04\x20"

# Success status; APNs answers 200 for every accepted push
APNS_SUCCESS_STATUS = 200

# Device tokens are 32 bytes rendered as hex
DEVICE_TOKEN_LENGTH = 64

# Reasons a caller may retry with backoff
APNS_RETRYABLE_REASONS = frozenset({
    "TooManyRequests",
    "InternalServerError",
    "ServiceUnavailable",
    "Shutdown",
})

# Reasons that indicate a permanent input problem
APNS_PERMANENT_REASONS = frozenset({
    "BadDeviceToken",
    "Unregistered",
    "TopicDisallowed",
    "DeviceTokenNotForTopic",
})

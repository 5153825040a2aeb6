# asserts_core/constants.py

from . import __version__

MEDIA_TYPE = "application/x.ubuntu.assertion"
USER_AGENT = f"asserts-core/{__version__}"

# header carrying the signer key id
SIGN_KEY_HEADER = "sign-key-sha3-384"
BODY_LENGTH_HEADER = "body-length"

# Key id length: unpadded urlsafe base64 of a 48 byte SHA3-384 digest
KEY_ID_LENGTH = 64

MAX_CHAIN_DEPTH = 16

DEFAULT_REQUEST_ID_PATH = "/api/v1/snaps/auth/request-id"
DEFAULT_SERIAL_PATH = "/api/v1/snaps/auth/devices"
DEFAULT_DEVICE_SERVICE_URL = "https://api.snapcraft.io"

DEFAULT_RETRY_INTERVAL = 5.0
DEFAULT_RETRY_MULTIPLIER = 2.0
DEFAULT_RETRY_MAX_INTERVAL = 300.0
DEFAULT_MAX_RETRIES = 10

"""Project-wide constants shared by the server and its tests."""

CONTENT_ID_BYTES: int = 16  # 32 hex chars in the public link
DELETE_TOKEN_BYTES: int = 16

DEFAULT_EXPIRY_MINUTES: int = 10
MAX_EXPIRY_MINUTES: int = 7 * 24 * 60

MAX_FILENAME_LENGTH: int = 255
DEFAULT_MAX_UPLOAD_MB: int = 10

STREAM_PIECE_SIZE_BYTES: int = 64 * 1024

BLOB_KEY_PREFIX: str = "linkvault"

ID_GENERATION_ATTEMPTS: int = 5

PASSWORD_HEADER: str = "X-Link-Password"

NO_STORE_HEADERS = {
    "Cache-Control": "no-store, no-cache, must-revalidate, proxy-revalidate",
    "Pragma": "no-cache",
    "Expires": "0",
}

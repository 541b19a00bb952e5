"""Configuration settings for the LinkVault server."""

import os

from common.constants import (
    DEFAULT_EXPIRY_MINUTES as _DEFAULT_EXPIRY_MINUTES,
    DEFAULT_MAX_UPLOAD_MB,
    MAX_EXPIRY_MINUTES as _MAX_EXPIRY_MINUTES,
)


def _env_flag(name: str, default: str = "false") -> bool:
    return os.environ.get(name, default).strip().lower() == "true"


VAULT_ENV = os.environ.get("VAULT_ENV", "production").strip().lower()

DATABASE_PATH = os.environ.get("VAULT_DATABASE_PATH", "./data/linkvault.db")

DATABASE_TIMEOUT_SECONDS = float(os.environ.get("VAULT_DATABASE_TIMEOUT_SECONDS", "30"))

VAULT_HOST = os.environ.get("VAULT_HOST", "0.0.0.0")

VAULT_PORT = int(os.environ.get("VAULT_PORT", "5000"))

# "local" keeps blobs on disk, "http" talks to a remote object store.
BLOB_BACKEND = os.environ.get("VAULT_BLOB_BACKEND", "local").strip().lower()

BLOB_STORE_URL = os.environ.get("VAULT_BLOB_STORE_URL", "")

BLOB_STORE_TOKEN = os.environ.get("VAULT_BLOB_STORE_TOKEN", "")

BLOB_STORAGE_PATH = os.environ.get("VAULT_BLOB_STORAGE_PATH", "./data/blobs")

BLOB_TIMEOUT_SECONDS = float(os.environ.get("VAULT_BLOB_TIMEOUT_SECONDS", "30"))

BLOB_MAX_RETRIES = int(os.environ.get("VAULT_BLOB_MAX_RETRIES", "1"))

BLOB_RETRY_BACKOFF_SECONDS = float(os.environ.get("VAULT_BLOB_RETRY_BACKOFF_SECONDS", "0.5"))

STAGING_DIR = os.environ.get("VAULT_STAGING_DIR", "./data/staging")

MAX_UPLOAD_BYTES = int(os.environ.get("VAULT_MAX_UPLOAD_MB", str(DEFAULT_MAX_UPLOAD_MB))) * 1024 * 1024

DEFAULT_EXPIRY_MINUTES = int(os.environ.get("VAULT_DEFAULT_EXPIRY_MINUTES", str(_DEFAULT_EXPIRY_MINUTES)))

MAX_EXPIRY_MINUTES = int(os.environ.get("VAULT_MAX_EXPIRY_MINUTES", str(_MAX_EXPIRY_MINUTES)))

BLOCKED_EXTENSIONS = frozenset(
    entry.strip().lower().lstrip(".")
    for entry in os.environ.get(
        "VAULT_BLOCKED_EXTENSIONS", "exe,msi,bat,cmd,com,scr,pif,vbs,ps1,jar"
    ).split(",")
    if entry.strip()
)

REAPER_INTERVAL_SECONDS = int(os.environ.get("VAULT_REAPER_INTERVAL_SECONDS", "60"))

# Whether viewing a file link's metadata spends one unit of max_access.
# Downloads always spend one.
FILE_VIEW_CONSUMES_QUOTA = _env_flag("VAULT_FILE_VIEW_CONSUMES_QUOTA")


def is_production() -> bool:
    return VAULT_ENV == "production"

"""Utility helper functions for LinkVault."""

import secrets
from datetime import datetime, timezone
from typing import Optional

from common.constants import CONTENT_ID_BYTES, DELETE_TOKEN_BYTES
from vault.exceptions import ValidationError


def generate_content_id() -> str:
    """
    Generate the public identifier used in a link path.

    Returns:
        32 lowercase hex characters (128 random bits)
    """
    return secrets.token_hex(CONTENT_ID_BYTES)


def generate_delete_token() -> str:
    """
    Generate a delete token, drawn independently from the content identifier.

    Returns:
        32 lowercase hex characters
    """
    return secrets.token_hex(DELETE_TOKEN_BYTES)


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def format_timestamp(value: datetime) -> str:
    """
    Format a timestamp for storage.

    Fixed-width UTC ISO strings keep lexical order equal to time order,
    which the expiry queries rely on.
    """
    return value.astimezone(timezone.utc).isoformat(timespec="microseconds")


def parse_timestamp(value: str) -> datetime:
    return datetime.fromisoformat(value)


def parse_strict_bool(value: Optional[str], field_name: str) -> bool:
    """
    Parse a boolean form field.

    Args:
        value: Raw field value; None or empty means false
        field_name: Field name used in the error message

    Returns:
        Parsed boolean

    Raises:
        ValidationError: If the value is anything other than true/false
    """
    if value is None or value == "":
        return False
    normalized = value.strip().lower()
    if normalized == "true":
        return True
    if normalized == "false":
        return False
    raise ValidationError(f"{field_name} must be 'true' or 'false'")


def parse_optional_int(value: Optional[str], field_name: str) -> Optional[int]:
    """
    Parse an optional integer form field.

    Raises:
        ValidationError: If the value is present but not an integer
    """
    if value is None or value.strip() == "":
        return None
    try:
        return int(value.strip())
    except ValueError:
        raise ValidationError(f"{field_name} must be an integer")


def parse_lenient_int(value: Optional[str]) -> Optional[int]:
    """
    Parse an integer form field, returning None for anything unparseable.
    """
    if value is None:
        return None
    try:
        return int(value.strip())
    except ValueError:
        return None

"""
Master key request signing.

Implements the HMAC-SHA256 master key scheme of the document service:

    StringToSign = verb + "\\n" + resourceType + "\\n" + resourceLink + "\\n"
                   + date + "\\n" + "" + "\\n"

all lower-cased except the resource link, signed with the base64-decoded
key and sent url-encoded as ``type=master&ver=1.0&sig=<signature>``.

Author: docdb Team
Date: 2025-12-12
"""

import base64
import hashlib
import hmac
import logging
from datetime import datetime, timezone
from email.utils import format_datetime
from typing import Dict, Mapping, Optional, Tuple
from urllib.parse import quote, unquote

from docdb.constants import HttpHeaders

logger = logging.getLogger(__name__)

# Default clock skew tolerance (15 minutes)
DEFAULT_CLOCK_SKEW_SECONDS = 15 * 60

MASTER_TOKEN_TYPE = "master"
RESOURCE_TOKEN_TYPE = "resource"
TOKEN_VERSION = "1.0"


def format_request_date(moment: Optional[datetime] = None) -> str:
    """RFC 1123 date as expected in ``x-ms-date``."""
    moment = moment or datetime.now(timezone.utc)
    return format_datetime(moment, usegmt=True)


def build_string_to_sign(verb: str, resource_type: str, resource_link: str, date: str) -> str:
    """
    Build the canonical string for a master key signature.

    Args:
        verb: HTTP method
        resource_type: Resource type segment (``dbs``, ``docs``, ...)
        resource_link: Name-based path or resource id of the target
        date: Value of the ``x-ms-date`` header

    Returns:
        Canonical string to sign
    """
    return f"{verb.lower()}\n{resource_type.lower()}\n{resource_link}\n{date.lower()}\n\n"


def compute_signature(string_to_sign: str, master_key: str) -> str:
    """
    Compute the HMAC-SHA256 signature.

    Args:
        string_to_sign: Canonical string
        master_key: Base64-encoded master key

    Returns:
        Base64-encoded signature
    """
    key_bytes = base64.b64decode(master_key)
    signature = hmac.new(key_bytes, string_to_sign.encode("utf-8"), hashlib.sha256).digest()
    return base64.b64encode(signature).decode("utf-8")


def build_master_key_authorization(
    verb: str,
    resource_type: str,
    resource_link: str,
    date: str,
    master_key: str,
) -> str:
    """Url-encoded ``authorization`` header value for a master key."""
    signature = compute_signature(
        build_string_to_sign(verb, resource_type, resource_link, date), master_key
    )
    return quote(f"type={MASTER_TOKEN_TYPE}&ver={TOKEN_VERSION}&sig={signature}", safe="")


def build_resource_token_authorization(token: str) -> str:
    """Url-encoded ``authorization`` header value for a resource token."""
    return quote(token, safe="")


def parse_authorization_header(header: str) -> Tuple[str, str, str]:
    """
    Parse an ``authorization`` header.

    Args:
        header: Url-encoded header value

    Returns:
        Tuple of (token type, version, signature)

    Raises:
        ValueError: If the header is malformed
    """
    decoded = unquote(header)
    fields: Dict[str, str] = {}
    for part in decoded.split("&"):
        if "=" not in part:
            raise ValueError(f"Malformed authorization header part: {part!r}")
        key, value = part.split("=", 1)
        fields[key.strip().lower()] = value.strip()
    try:
        return fields["type"], fields["ver"], fields["sig"]
    except KeyError as e:
        raise ValueError(f"Authorization header is missing '{e.args[0]}'") from None


def verify_master_key_signature(
    verb: str,
    resource_type: str,
    resource_link: str,
    headers: Mapping[str, str],
    master_key: str,
    clock_skew_seconds: int = DEFAULT_CLOCK_SKEW_SECONDS,
) -> bool:
    """
    Validate a master key signed request.

    Args:
        verb: HTTP method
        resource_type: Resource type segment
        resource_link: Resource link used for signing
        headers: Request headers (lowercase keys)
        master_key: Expected base64 master key
        clock_skew_seconds: Allowed distance between ``x-ms-date`` and now

    Returns:
        True if the signature matches and the date is within the window
    """
    auth_header = headers.get(HttpHeaders.AUTHORIZATION)
    date = headers.get(HttpHeaders.X_DATE)
    if not auth_header or not date:
        return False

    try:
        token_type, _, provided = parse_authorization_header(auth_header)
    except ValueError as e:
        logger.warning(f"Rejected authorization header: {e}")
        return False
    if token_type != MASTER_TOKEN_TYPE:
        return False

    try:
        request_time = datetime.strptime(date, "%a, %d %b %Y %H:%M:%S GMT").replace(tzinfo=timezone.utc)
    except ValueError:
        logger.warning(f"Invalid date format: {date}")
        return False
    skew = abs((datetime.now(timezone.utc) - request_time).total_seconds())
    if skew > clock_skew_seconds:
        logger.warning(f"Request date outside allowed clock skew: {skew:.0f}s")
        return False

    expected = compute_signature(build_string_to_sign(verb, resource_type, resource_link, date), master_key)
    # Constant-time comparison
    return hmac.compare_digest(provided.encode("utf-8"), expected.encode("utf-8"))

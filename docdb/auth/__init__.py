"""
docdb Authorization Module.

Master key request signing and per-request credential resolution for
master keys, resource tokens and permission feeds.

Author: docdb Team
Date: 2025-12-12
"""

from docdb.auth.context import (
    AuthorizationContext,
    MasterKeyCredential,
    PermissionGrant,
    ResourceTokenCredential,
)
from docdb.auth.masterkey import (
    build_master_key_authorization,
    build_resource_token_authorization,
    build_string_to_sign,
    compute_signature,
    format_request_date,
    parse_authorization_header,
    verify_master_key_signature,
)

__all__ = [
    # Context
    "AuthorizationContext",
    "MasterKeyCredential",
    "PermissionGrant",
    "ResourceTokenCredential",
    # Master key signing
    "build_master_key_authorization",
    "build_resource_token_authorization",
    "build_string_to_sign",
    "compute_signature",
    "format_request_date",
    "parse_authorization_header",
    "verify_master_key_signature",
]

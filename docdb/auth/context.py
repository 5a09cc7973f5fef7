"""
Authorization context.

Chooses, per request, the credential to apply: the master key, a resource
token looked up by resource id, or the narrowest grant of a permission feed.
The credential set is fixed when the context is built and is safe to share
between concurrently executing requests.

Author: docdb Team
Date: 2025-12-12
"""

import logging
from dataclasses import dataclass
from types import MappingProxyType
from typing import Any, Dict, Iterable, List, Mapping, Optional, Tuple

from docdb.auth.masterkey import (
    build_master_key_authorization,
    build_resource_token_authorization,
    format_request_date,
)
from docdb.constants import HttpHeaders
from docdb.exceptions import Unauthorized, ValidationError
from docdb.links import RID_PREFIX_SIZES, ResourceLink, decode_rid, encode_rid, parse_link, trim_slashes

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class MasterKeyCredential:
    """Account master key; authorizes every request identically."""

    key: str

    def authorization(self, verb: str, link: ResourceLink, date: str) -> str:
        return build_master_key_authorization(
            verb, link.resource_type, link.resource_link, date, self.key
        )

    def __repr__(self) -> str:
        return "MasterKeyCredential(key=***)"


@dataclass(frozen=True)
class ResourceTokenCredential:
    """Token scoped to one resource and its descendants."""

    token: str
    resource_id: Optional[str] = None

    def authorization(self, verb: str, link: ResourceLink, date: str) -> str:
        return build_resource_token_authorization(self.token)

    def __repr__(self) -> str:
        return f"ResourceTokenCredential(resource_id={self.resource_id!r}, token=***)"


@dataclass(frozen=True)
class PermissionGrant:
    """A permission record reduced to what token selection needs."""

    id: str
    token: str
    resource: ResourceLink
    mode: str = "Read"

    @classmethod
    def from_record(cls, record: Mapping[str, Any]) -> "PermissionGrant":
        token = record.get("_token")
        resource = record.get("resource")
        if not token or not resource:
            raise ValidationError(
                f"Permission '{record.get('id')}' has no token or resource link"
            )
        return cls(
            id=record.get("id", ""),
            token=token,
            resource=parse_link(resource),
            mode=record.get("permissionMode", "Read"),
        )

    @property
    def resource_id(self) -> Optional[str]:
        if self.resource.is_name_based or not self.resource.resource_ids:
            return None
        return self.resource.resource_ids[0]

    def covers(self, link: ResourceLink) -> bool:
        """Whether this grant's resource is the target or one of its ancestors."""
        rid = self.resource_id
        if rid is not None and rid in link.resource_ids:
            return True
        granted = trim_slashes(self.resource.path)
        return link.path == granted or link.path.startswith(granted + "/")


Credential = Any  # MasterKeyCredential | ResourceTokenCredential


class AuthorizationContext:
    """
    Resolves the credential for each request.

    Exactly one credential source is used, in order of precedence: master
    key, resource token map, permission feed.
    """

    def __init__(
        self,
        master_key: Optional[str] = None,
        resource_tokens: Optional[Mapping[str, str]] = None,
        permission_feed: Optional[Iterable[Mapping[str, Any]]] = None,
    ):
        self._master = MasterKeyCredential(master_key) if master_key else None
        self._resource_tokens: Mapping[str, str] = MappingProxyType(dict(resource_tokens or {}))
        self._grants: Tuple[PermissionGrant, ...] = tuple(
            PermissionGrant.from_record(p) for p in (permission_feed or [])
        )

    @property
    def has_credentials(self) -> bool:
        return bool(self._master or self._resource_tokens or self._grants)

    def credential_for(self, link: ResourceLink) -> Credential:
        """
        Resolve the credential for a request target.

        Args:
            link: Parsed request target

        Returns:
            Credential to sign the request with

        Raises:
            Unauthorized: If no credential covers the target
        """
        if self._master is not None:
            return self._master

        if self._resource_tokens:
            credential = self._lookup_resource_token(link)
            if credential is not None:
                return credential

        if self._grants:
            grant = self._narrowest_grant(link)
            if grant is not None:
                return ResourceTokenCredential(grant.token, grant.resource_id)

        if link.is_name_based and not link.resource_ids:
            # Names cannot be matched against resource ids; a single token is unambiguous
            credential = self._sole_rid_keyed_token()
            if credential is not None:
                return credential
            logger.debug(f"Cannot choose a token for name-based link '{link.path}'")
            raise Unauthorized(
                "The input authorization token can't serve the request. "
                f"No credential is available for resource '{link.path}'; with several tokens, "
                "address resources by self link or by a ResourceIdentity carrying resource ids."
            )

        logger.debug(f"No credential covers '{link.path or '<account>'}'")
        raise Unauthorized(
            "The input authorization token can't serve the request. "
            f"No credential is available for resource '{link.path or '<account>'}'."
        )

    def _sole_rid_keyed_token(self) -> Optional[ResourceTokenCredential]:
        candidates = {token: rid for rid, token in self._resource_tokens.items()}
        for grant in self._grants:
            if not grant.resource.is_name_based:
                candidates.setdefault(grant.token, grant.resource_id)
        if len(candidates) != 1:
            return None
        token, rid = next(iter(candidates.items()))
        return ResourceTokenCredential(token, rid)

    def _lookup_resource_token(self, link: ResourceLink) -> Optional[ResourceTokenCredential]:
        # The account root accepts any token
        if link.is_account:
            rid, token = next(iter(self._resource_tokens.items()))
            return ResourceTokenCredential(token, rid)

        for rid in _candidate_keys(link):
            token = self._resource_tokens.get(rid)
            if token is not None:
                return ResourceTokenCredential(token, rid)
        return None

    def _narrowest_grant(self, link: ResourceLink) -> Optional[PermissionGrant]:
        if link.is_account:
            return self._grants[0]
        applicable = [g for g in self._grants if g.covers(link)]
        if not applicable:
            return None
        return max(applicable, key=lambda g: g.resource.depth)

    def sign(self, verb: str, link: ResourceLink, headers: Dict[str, str]) -> Dict[str, str]:
        """
        Add ``x-ms-date`` and ``authorization`` to ``headers``.

        Raises:
            Unauthorized: If no credential covers the target
        """
        credential = self.credential_for(link)
        date = format_request_date()
        headers[HttpHeaders.X_DATE] = date
        headers[HttpHeaders.AUTHORIZATION] = credential.authorization(verb, link, date)
        return headers


def _candidate_keys(link: ResourceLink) -> List[str]:
    """Resource ids to try, from the target up to its database."""
    keys = list(link.resource_ids)
    if link.is_media:
        # A media id is the attachment's resource id, which embeds its ancestors'
        keys.append(link.resource_link)
        raw = decode_rid(link.resource_link)
        if raw is not None:
            keys.extend(encode_rid(raw[:size]) for size in RID_PREFIX_SIZES if size < len(raw))
    elif link.is_name_based and not keys:
        # Ids of a name-based path, innermost first
        keys.extend(resource_id for _, resource_id in reversed(link.segment_pairs()))
    return keys

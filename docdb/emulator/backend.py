"""
Emulator Backend.

In-memory implementation of the document service's resource model:
databases, collections, documents, attachments with media, users,
permissions, triggers, UDFs, stored procedures, conflicts and offers.
Resources are reachable by name-based paths and by resource-id (self)
links; resource ids are hierarchical so a child's id starts with its
parent's.

Author: docdb Team
Date: 2025-12-13
"""

import asyncio
import base64
import copy
import json
import logging
import os
import secrets
import time
import uuid
from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional, Tuple
from urllib.parse import unquote

from docdb.auth.masterkey import (
    MASTER_TOKEN_TYPE,
    RESOURCE_TOKEN_TYPE,
    TOKEN_VERSION,
    parse_authorization_header,
    verify_master_key_signature,
)
from docdb.constants import DEFAULT_PAGE_SIZE, MEDIA_MAJOR_TYPES, HttpHeaders
from docdb.exceptions import ValidationError
from docdb.links import ResourceKind, ResourceLink, encode_rid, parse_link, validate_id

from .exceptions import (
    BadRequestError,
    ConflictError,
    MethodNotAllowedError,
    NotFoundError,
    PreconditionFailedError,
    UnauthorizedError,
)
from .query import QueryError, execute_query

logger = logging.getLogger(__name__)

#: Well-known master key of local document service emulators
EMULATOR_MASTER_KEY = "C2y6yDjf5/R+ob0N8A7Cgv30VRDJIWEHLM+4QDU5DE2nQ9nDuVTqobD4b8mGGyPMbIZnqyMsEcaGQy67XIw/Jw=="

OFFER_TYPES = ("S1", "S2", "S3")
PERMISSION_MODES = ("Read", "All")
TRIGGER_TYPES = ("Pre", "Post")
TRIGGER_OPERATIONS = ("All", "Create", "Replace", "Delete")
INDEXING_MODES = ("consistent", "lazy", "none")

_RID_SIZES: Dict[ResourceKind, int] = {
    ResourceKind.DATABASE: 4,
    ResourceKind.COLLECTION: 8,
    ResourceKind.USER: 8,
    ResourceKind.DOCUMENT: 16,
    ResourceKind.TRIGGER: 16,
    ResourceKind.UDF: 16,
    ResourceKind.STORED_PROCEDURE: 16,
    ResourceKind.CONFLICT: 16,
    ResourceKind.PERMISSION: 16,
    ResourceKind.ATTACHMENT: 20,
}
_OFFER_RID_SIZE = 3

# System link properties of each kind: property -> child kind
_CHILD_LINKS: Dict[ResourceKind, Dict[str, ResourceKind]] = {
    ResourceKind.DATABASE: {"_colls": ResourceKind.COLLECTION, "_users": ResourceKind.USER},
    ResourceKind.COLLECTION: {
        "_docs": ResourceKind.DOCUMENT,
        "_sprocs": ResourceKind.STORED_PROCEDURE,
        "_triggers": ResourceKind.TRIGGER,
        "_udfs": ResourceKind.UDF,
        "_conflicts": ResourceKind.CONFLICT,
    },
    ResourceKind.DOCUMENT: {"_attachments": ResourceKind.ATTACHMENT},
    ResourceKind.USER: {"_permissions": ResourceKind.PERMISSION},
}

_SYSTEM_PROPERTIES = frozenset({"_rid", "_self", "_etag", "_ts", "_token"})

_MB = 1024 * 1024


@dataclass(eq=False)
class ResourceNode:
    """A stored resource and its children, by kind then id."""

    kind: ResourceKind
    record: Dict[str, Any]
    raw_rid: bytes
    parent: Optional["ResourceNode"] = None
    children: Dict[ResourceKind, Dict[str, "ResourceNode"]] = field(default_factory=dict)
    grant_rid: Optional[str] = None

    @property
    def rid(self) -> str:
        return self.record["_rid"]

    @property
    def id(self) -> str:
        return self.record["id"]

    @property
    def self_link(self) -> str:
        return self.record["_self"]

    def chain_rids(self) -> List[str]:
        """Resource ids from this node up to its database."""
        rids: List[str] = []
        node: Optional[ResourceNode] = self
        while node is not None:
            rids.append(node.rid)
            node = node.parent
        return rids


@dataclass
class MediaEntry:
    content: bytes
    content_type: str
    attachment_rid: str


@dataclass
class OperationResult:
    """What a backend operation hands back to the HTTP layer."""

    body: Any = None
    status_code: int = 200
    headers: Dict[str, str] = field(default_factory=dict)


class DocumentDBBackend:
    """In-memory document service.

    Thread-safe with async locking for concurrent operations.

    Attributes:
        master_key: Base64 master key requests are verified against
        page_size: Page size used when a request sets no max item count
        max_media_storage_mb: Media quota reported by the account
    """

    def __init__(
        self,
        master_key: str = EMULATOR_MASTER_KEY,
        page_size: int = DEFAULT_PAGE_SIZE,
        max_media_storage_mb: int = 10240,
    ) -> None:
        self.master_key = master_key
        self.page_size = page_size
        self.max_media_storage_mb = max_media_storage_mb
        self._databases: Dict[str, ResourceNode] = {}
        self._nodes: Dict[str, ResourceNode] = {}
        self._offers: Dict[str, Dict[str, Any]] = {}
        self._media: Dict[str, MediaEntry] = {}
        self._tokens: Dict[str, ResourceNode] = {}
        self._lock = asyncio.Lock()

    # ========== Authorization ==========

    def authorize(self, method: str, link: ResourceLink, headers: Mapping[str, str]) -> None:
        """
        Check the request's credential against the target.

        Raises:
            UnauthorizedError: If the credential is missing, invalid or does
                not grant ``method`` on the target
        """
        header = headers.get(HttpHeaders.AUTHORIZATION)
        if not header:
            raise UnauthorizedError("Required Header authorization is missing. Ensure a valid Authorization token is passed.")
        try:
            token_type, version, _ = parse_authorization_header(header)
        except ValueError as e:
            raise UnauthorizedError(f"Invalid authorization header: {e}") from None
        if version != TOKEN_VERSION:
            raise UnauthorizedError(f"Unsupported authorization token version '{version}'")

        if token_type == MASTER_TOKEN_TYPE:
            if not verify_master_key_signature(
                method, link.resource_type, link.resource_link, headers, self.master_key
            ):
                raise UnauthorizedError(
                    "The input authorization token can't serve the request. "
                    "Please check that the expected payload is built as per the protocol."
                )
            return

        if token_type != RESOURCE_TOKEN_TYPE:
            raise UnauthorizedError(f"Unknown authorization token type '{token_type}'")

        permission = self._tokens.get(unquote(header))
        if permission is None:
            raise UnauthorizedError("The resource token is not valid or has been revoked.")
        self._check_permission(method, link, headers, permission)

    def _check_permission(
        self,
        method: str,
        link: ResourceLink,
        headers: Mapping[str, str],
        permission: ResourceNode,
    ) -> None:
        read_only = method == "GET" or (
            method == "POST" and headers.get(HttpHeaders.IS_QUERY) == "true"
        )
        if link.is_account:
            if method != "GET":
                raise UnauthorizedError("Resource tokens cannot modify the database account.")
            return
        if link.kind == ResourceKind.OFFER:
            raise UnauthorizedError("Resource tokens cannot access offers.")

        if permission.grant_rid not in self._scope_rids(link):
            raise UnauthorizedError(
                f"The resource token does not grant access to '{link.path}'."
            )
        if permission.record["permissionMode"] == "Read" and not read_only:
            raise UnauthorizedError(
                f"The resource token grants read access only; {method} on '{link.path}' is not allowed."
            )

    def _scope_rids(self, link: ResourceLink) -> List[str]:
        """Resource ids of the resolvable part of ``link``, outermost first."""
        if link.is_media:
            entry = self._media.get(link.resource_link)
            node = self._nodes.get(entry.attachment_rid) if entry else None
            return node.chain_rids() if node else []

        rids: List[str] = []
        node: Optional[ResourceNode] = None
        for segment, ident in link.segment_pairs():
            node = self._find_child(node, ResourceKind.from_segment(segment), ident, link.is_name_based)
            if node is None:
                break
            rids.append(node.rid)
        return rids

    # ========== Resolution ==========

    def _siblings(self, parent: Optional[ResourceNode], kind: ResourceKind) -> Dict[str, ResourceNode]:
        if parent is None:
            return self._databases
        return parent.children.setdefault(kind, {})

    def _find_child(
        self,
        parent: Optional[ResourceNode],
        kind: ResourceKind,
        ident: str,
        name_based: bool,
    ) -> Optional[ResourceNode]:
        if name_based:
            return self._siblings(parent, kind).get(ident)
        node = self._nodes.get(ident)
        if node is None or node.kind != kind or node.parent is not parent:
            return None
        return node

    def _resolve_pairs(self, link: ResourceLink) -> Optional[ResourceNode]:
        node: Optional[ResourceNode] = None
        for segment, ident in link.segment_pairs():
            kind = ResourceKind.from_segment(segment)
            node = self._find_child(node, kind, ident, link.is_name_based)
            if node is None:
                raise NotFoundError(f"{kind.value} '{ident}' does not exist.")
        return node

    def _resolve(self, link: ResourceLink) -> ResourceNode:
        node = self._resolve_pairs(link)
        if node is None:
            raise NotFoundError()
        return node

    def _resolve_parent(self, link: ResourceLink) -> Optional[ResourceNode]:
        """Owner of a feed link; ``None`` for the databases feed."""
        return self._resolve_pairs(link)

    # ========== Record helpers ==========

    def _new_rid(self, kind: ResourceKind, parent: Optional[ResourceNode]) -> bytes:
        prefix = parent.raw_rid if parent is not None else b""
        while True:
            raw = prefix + os.urandom(_RID_SIZES[kind] - len(prefix))
            if encode_rid(raw) not in self._nodes:
                return raw

    @staticmethod
    def _stamp(record: Dict[str, Any]) -> None:
        record["_etag"] = f'"{uuid.uuid4()}"'
        record["_ts"] = int(time.time())

    def _build_record(
        self,
        kind: ResourceKind,
        body: Mapping[str, Any],
        parent: Optional[ResourceNode],
        raw_rid: bytes,
    ) -> Dict[str, Any]:
        rid = encode_rid(raw_rid)
        parent_self = parent.self_link if parent is not None else ""
        record = {k: copy.deepcopy(v) for k, v in body.items() if k not in _SYSTEM_PROPERTIES}
        record["_rid"] = rid
        record["_self"] = f"{parent_self}{kind.segment}/{rid}/"
        for prop, child_kind in _CHILD_LINKS.get(kind, {}).items():
            record[prop] = f"{child_kind.segment}/"
        self._stamp(record)
        return record

    @staticmethod
    def _public(record: Mapping[str, Any]) -> Dict[str, Any]:
        return copy.deepcopy(dict(record))

    @staticmethod
    def _check_id(body: Mapping[str, Any]) -> str:
        if "id" not in body or body["id"] is None:
            raise BadRequestError("The input content is invalid because the required property 'id' is missing.")
        try:
            return validate_id(body["id"])
        except ValidationError as e:
            raise BadRequestError(e.message) from None

    @staticmethod
    def _check_if_match(node: ResourceNode, headers: Mapping[str, str]) -> None:
        expected = headers.get(HttpHeaders.IF_MATCH)
        if expected and expected != node.record.get("_etag"):
            raise PreconditionFailedError(
                "One of the specified pre-condition is not met."
            )

    def _validate_body(self, kind: ResourceKind, body: Mapping[str, Any]) -> None:
        """Kind-specific body rules."""
        if kind in (ResourceKind.TRIGGER, ResourceKind.UDF, ResourceKind.STORED_PROCEDURE):
            if not isinstance(body.get("body"), str):
                raise BadRequestError(f"The {kind.value} body must be a string of script source.")
        if kind == ResourceKind.TRIGGER:
            if body.get("triggerType") not in TRIGGER_TYPES:
                raise BadRequestError(f"Invalid triggerType '{body.get('triggerType')}'.")
            if body.get("triggerOperation") not in TRIGGER_OPERATIONS:
                raise BadRequestError(f"Invalid triggerOperation '{body.get('triggerOperation')}'.")
        if kind == ResourceKind.PERMISSION:
            if body.get("permissionMode") not in PERMISSION_MODES:
                raise BadRequestError(f"Invalid permissionMode '{body.get('permissionMode')}'.")
            if not isinstance(body.get("resource"), str):
                raise BadRequestError("The permission resource link is missing.")
        if kind == ResourceKind.ATTACHMENT:
            if not isinstance(body.get("contentType"), str) or not isinstance(body.get("media"), str):
                raise BadRequestError("An attachment requires contentType and media.")
        if kind == ResourceKind.COLLECTION:
            policy = body.get("indexingPolicy")
            if policy is not None:
                mode = str(policy.get("indexingMode", "consistent")).lower() if isinstance(policy, dict) else None
                if mode not in INDEXING_MODES:
                    raise BadRequestError("The indexing policy is invalid.")

    def _check_triggers(self, collection: ResourceNode, headers: Mapping[str, str], operation: str) -> None:
        """Validate pre/post trigger includes; trigger scripts are never run."""
        triggers = collection.children.get(ResourceKind.TRIGGER, {})
        for header, trigger_type in (
            (HttpHeaders.PRE_TRIGGER_INCLUDE, "Pre"),
            (HttpHeaders.POST_TRIGGER_INCLUDE, "Post"),
        ):
            for trigger_id in filter(None, (t.strip() for t in headers.get(header, "").split(","))):
                trigger = triggers.get(trigger_id)
                if trigger is None:
                    raise BadRequestError(f"Trigger '{trigger_id}' does not exist.")
                record = trigger.record
                if record["triggerType"] != trigger_type:
                    raise BadRequestError(f"Trigger '{trigger_id}' is not a {trigger_type}-trigger.")
                if record["triggerOperation"] not in ("All", operation):
                    raise BadRequestError(
                        f"Trigger '{trigger_id}' does not apply to {operation} operations."
                    )

    def _resource_rid(self, resource_link: str) -> str:
        try:
            return self._resolve(parse_link(resource_link)).rid
        except (ValidationError, NotFoundError):
            raise BadRequestError(f"The permission resource '{resource_link}' is invalid.") from None

    # ========== Pagination ==========

    def _paginate(
        self,
        items: List[Any],
        headers: Mapping[str, str],
        owner_rid: str,
        kind: ResourceKind,
    ) -> OperationResult:
        page_size = self.page_size
        if HttpHeaders.MAX_ITEM_COUNT in headers:
            try:
                requested = int(headers[HttpHeaders.MAX_ITEM_COUNT])
            except ValueError:
                raise BadRequestError("Invalid value for x-ms-max-item-count.") from None
            if requested > 0:
                page_size = requested

        offset = 0
        token = headers.get(HttpHeaders.CONTINUATION)
        if token:
            offset = _decode_continuation(token)

        page = items[offset:offset + page_size]
        response_headers = {HttpHeaders.ITEM_COUNT: str(len(page))}
        if offset + page_size < len(items):
            response_headers[HttpHeaders.CONTINUATION] = _encode_continuation(offset + page_size)

        body = {"_rid": owner_rid, kind.feed_key: page, "_count": len(page)}
        return OperationResult(body=body, headers=response_headers)

    # ========== Resource operations ==========

    async def create(
        self,
        link: ResourceLink,
        body: Any,
        headers: Mapping[str, str],
        upsert: bool = False,
    ) -> OperationResult:
        """
        Create (or upsert) a resource in a feed.

        Raises:
            BadRequestError: If the body is invalid
            NotFoundError: If the owner does not exist
            ConflictError: If a sibling has the same id
        """
        kind = link.kind
        if kind in (ResourceKind.OFFER, ResourceKind.CONFLICT):
            raise MethodNotAllowedError(f"{kind.value} resources cannot be created.")
        if not isinstance(body, dict):
            raise BadRequestError("The request body must be a JSON object.")

        async with self._lock:
            parent = self._resolve_parent(link)
            resource_id = self._check_id(body)
            siblings = self._siblings(parent, kind)

            existing = siblings.get(resource_id)
            if existing is not None:
                if not upsert:
                    raise ConflictError()
                record = self._replace_node(existing, body, headers)
                return OperationResult(body=record, headers={HttpHeaders.ETAG: record["_etag"]})

            self._validate_body(kind, body)
            if kind == ResourceKind.DOCUMENT:
                self._check_triggers(parent, headers, "Create")

            offer_type = headers.get(HttpHeaders.OFFER_TYPE, "S1")
            if kind == ResourceKind.COLLECTION and offer_type not in OFFER_TYPES:
                raise BadRequestError(f"Invalid offer type '{offer_type}'.")
            grant_rid = self._resource_rid(body["resource"]) if kind == ResourceKind.PERMISSION else None

            raw_rid = self._new_rid(kind, parent)
            record = self._build_record(kind, body, parent, raw_rid)
            node = ResourceNode(kind=kind, record=record, raw_rid=raw_rid, parent=parent, grant_rid=grant_rid)
            if kind == ResourceKind.COLLECTION:
                record.setdefault("indexingPolicy", _default_indexing_policy())
                self._create_offer(node, offer_type)
            if kind == ResourceKind.PERMISSION:
                self._issue_token(node)

            siblings[resource_id] = node
            self._nodes[node.rid] = node
            logger.debug(f"Created {kind.value} '{resource_id}' ({node.rid})")
            return OperationResult(body=self._public(record), status_code=201, headers={HttpHeaders.ETAG: record["_etag"]})

    async def read(self, link: ResourceLink, headers: Mapping[str, str]) -> OperationResult:
        async with self._lock:
            if link.kind == ResourceKind.OFFER:
                offer = self._get_offer(link)
                return OperationResult(body=self._public(offer))

            node = self._resolve(link)
            response_headers = {HttpHeaders.ETAG: node.record["_etag"]}
            if node.kind == ResourceKind.COLLECTION:
                response_headers[HttpHeaders.INDEX_TRANSFORMATION_PROGRESS] = "100"
                mode = node.record.get("indexingPolicy", {}).get("indexingMode", "consistent")
                if str(mode).lower() == "lazy":
                    response_headers[HttpHeaders.LAZY_INDEXING_PROGRESS] = "100"
            return OperationResult(body=self._public(node.record), headers=response_headers)

    async def replace(self, link: ResourceLink, body: Any, headers: Mapping[str, str]) -> OperationResult:
        """
        Replace a resource.

        Raises:
            BadRequestError: If the body is invalid or changes ``_rid``
            NotFoundError: If the resource does not exist
            ConflictError: If the new id is taken by a sibling
            PreconditionFailedError: If ``if-match`` does not match
        """
        if not isinstance(body, dict):
            raise BadRequestError("The request body must be a JSON object.")

        async with self._lock:
            if link.kind == ResourceKind.OFFER:
                return OperationResult(body=self._replace_offer(link, body))

            node = self._resolve(link)
            self._check_if_match(node, headers)
            record = self._replace_node(node, body, headers)
            return OperationResult(body=record, headers={HttpHeaders.ETAG: record["_etag"]})

    def _replace_node(self, node: ResourceNode, body: Mapping[str, Any], headers: Mapping[str, str]) -> Dict[str, Any]:
        new_id = self._check_id(body)
        if "_rid" in body and body["_rid"] != node.rid:
            raise BadRequestError("The resource id (_rid) of a resource cannot be changed.")
        self._validate_body(node.kind, body)
        if node.kind == ResourceKind.DOCUMENT:
            self._check_triggers(node.parent, headers, "Replace")

        siblings = self._siblings(node.parent, node.kind)
        if new_id != node.id:
            if new_id in siblings:
                raise ConflictError()
            # Keep creation order when renaming
            reordered = {(new_id if key == node.id else key): value for key, value in siblings.items()}
            siblings.clear()
            siblings.update(reordered)

        if node.kind == ResourceKind.PERMISSION:
            node.grant_rid = self._resource_rid(body["resource"])

        system = {k: v for k, v in node.record.items() if k.startswith("_")}
        record = {k: copy.deepcopy(v) for k, v in body.items() if not k.startswith("_")}
        record.update(system)
        if node.kind == ResourceKind.COLLECTION:
            record.setdefault("indexingPolicy", node.record.get("indexingPolicy", _default_indexing_policy()))
        self._stamp(record)
        node.record = record
        logger.debug(f"Replaced {node.kind.value} '{new_id}' ({node.rid})")
        return self._public(record)

    async def delete(self, link: ResourceLink, headers: Mapping[str, str]) -> OperationResult:
        """Delete a resource and everything beneath it."""
        if link.kind == ResourceKind.OFFER:
            raise MethodNotAllowedError("Offers are deleted with their collection.")

        async with self._lock:
            node = self._resolve(link)
            self._check_if_match(node, headers)
            if node.kind == ResourceKind.DOCUMENT:
                self._check_triggers(node.parent, headers, "Delete")
            del self._siblings(node.parent, node.kind)[node.id]
            self._forget(node)
            logger.debug(f"Deleted {node.kind.value} '{node.id}' ({node.rid})")
            return OperationResult(status_code=204)

    def _forget(self, node: ResourceNode) -> None:
        for children in node.children.values():
            for child in list(children.values()):
                self._forget(child)
        self._nodes.pop(node.rid, None)
        if node.kind == ResourceKind.COLLECTION:
            for key in [k for k, offer in self._offers.items() if offer["offerResourceId"] == node.rid]:
                del self._offers[key]
        if node.kind == ResourceKind.PERMISSION:
            self._tokens.pop(node.record.get("_token", ""), None)
        if node.kind == ResourceKind.ATTACHMENT:
            self._media.pop(node.rid, None)

    async def read_feed(self, link: ResourceLink, headers: Mapping[str, str]) -> OperationResult:
        async with self._lock:
            owner_rid, records = self._feed_records(link)
            return self._paginate(records, headers, owner_rid, link.kind)

    async def query(self, link: ResourceLink, body: Any, headers: Mapping[str, str]) -> OperationResult:
        """
        Run a query over a feed.

        Raises:
            BadRequestError: If the query is malformed or outside the
                supported grammar
        """
        if not isinstance(body, dict) or not isinstance(body.get("query"), str):
            raise BadRequestError("The query body must be an object with a 'query' string.")

        async with self._lock:
            owner_rid, records = self._feed_records(link)
            try:
                results = execute_query(records, body["query"], body.get("parameters"))
            except QueryError as e:
                raise BadRequestError(f"Syntax error in query: {e}") from None
            return self._paginate(results, headers, owner_rid, link.kind)

    def _feed_records(self, link: ResourceLink) -> Tuple[str, List[Dict[str, Any]]]:
        if link.kind == ResourceKind.OFFER:
            return "", [self._public(offer) for offer in self._offers.values()]
        parent = self._resolve_parent(link)
        siblings = self._siblings(parent, link.kind)
        owner_rid = parent.rid if parent is not None else ""
        return owner_rid, [self._public(node.record) for node in siblings.values()]

    async def execute_stored_procedure(self, link: ResourceLink, body: Any) -> OperationResult:
        """Echo the parameters; script bodies are never executed."""
        if body is None:
            body = []
        if not isinstance(body, list):
            raise BadRequestError("Stored procedure parameters must be a JSON array.")
        async with self._lock:
            node = self._resolve(link)
            logger.debug(f"Executed stored procedure '{node.id}' with {len(body)} parameters")
            return OperationResult(body=body)

    # ========== Offers ==========

    def _create_offer(self, collection: ResourceNode, offer_type: str) -> None:
        while True:
            rid = encode_rid(os.urandom(_OFFER_RID_SIZE))
            if rid.lower() not in self._offers:
                break
        offer = {
            "id": rid,
            "_rid": rid,
            "_self": f"offers/{rid}/",
            "offerVersion": "V1",
            "offerType": offer_type,
            "resource": collection.self_link,
            "offerResourceId": collection.rid,
        }
        self._stamp(offer)
        self._offers[rid.lower()] = offer

    def _get_offer(self, link: ResourceLink) -> Dict[str, Any]:
        offer = self._offers.get(link.resource_link.lower())
        if offer is None:
            raise NotFoundError("Offer does not exist.")
        return offer

    def _replace_offer(self, link: ResourceLink, body: Mapping[str, Any]) -> Dict[str, Any]:
        offer = self._get_offer(link)
        if body.get("id") is None:
            raise BadRequestError("The offer id is missing.")
        if body.get("_rid") != offer["_rid"]:
            raise BadRequestError("The offer resource id does not match.")
        if body.get("offerType") not in OFFER_TYPES:
            raise BadRequestError(f"Invalid offer type '{body.get('offerType')}'.")
        offer["offerType"] = body["offerType"]
        self._stamp(offer)
        return self._public(offer)

    # ========== Permissions ==========

    def _issue_token(self, permission: ResourceNode) -> None:
        token = f"type={RESOURCE_TOKEN_TYPE}&ver={TOKEN_VERSION}&sig={secrets.token_urlsafe(24)}"
        permission.record["_token"] = token
        self._tokens[token] = permission

    # ========== Media ==========

    async def create_attachment_with_media(
        self,
        link: ResourceLink,
        content: bytes,
        content_type: str,
        slug: Optional[str],
    ) -> OperationResult:
        """
        Store media and create the attachment referencing it.

        Raises:
            BadRequestError: If the content type or slug is invalid
            ConflictError: If an attachment with the slug exists
        """
        _check_content_type(content_type)
        async with self._lock:
            document = self._resolve_parent(link)
            attachment_id = self._check_id({"id": slug or str(uuid.uuid4())})
            siblings = self._siblings(document, ResourceKind.ATTACHMENT)
            if attachment_id in siblings:
                raise ConflictError()

            raw_rid = self._new_rid(ResourceKind.ATTACHMENT, document)
            media_id = encode_rid(raw_rid)
            body = {"id": attachment_id, "contentType": content_type, "media": f"/media/{media_id}"}
            record = self._build_record(ResourceKind.ATTACHMENT, body, document, raw_rid)
            node = ResourceNode(kind=ResourceKind.ATTACHMENT, record=record, raw_rid=raw_rid, parent=document)
            siblings[attachment_id] = node
            self._nodes[node.rid] = node
            self._media[media_id] = MediaEntry(content, content_type, node.rid)
            logger.debug(f"Stored {len(content)} bytes of media for attachment '{attachment_id}'")
            return OperationResult(body=self._public(record), status_code=201, headers={HttpHeaders.ETAG: record["_etag"]})

    async def read_media(self, media_id: str) -> MediaEntry:
        async with self._lock:
            entry = self._media.get(media_id)
            if entry is None:
                raise NotFoundError("Media does not exist.")
            return entry

    async def update_media(self, media_id: str, content: bytes, content_type: str) -> OperationResult:
        _check_content_type(content_type)
        async with self._lock:
            entry = self._media.get(media_id)
            if entry is None:
                raise NotFoundError("Media does not exist.")
            entry.content = content
            entry.content_type = content_type
            attachment = self._nodes[entry.attachment_rid]
            attachment.record["contentType"] = content_type
            self._stamp(attachment.record)
            return OperationResult(body=self._public(attachment.record))

    def media_usage_mb(self) -> int:
        total = sum(len(entry.content) for entry in self._media.values())
        return (total + _MB - 1) // _MB

    # ========== Account ==========

    async def database_account(self) -> OperationResult:
        async with self._lock:
            current = self.media_usage_mb()
            body = {
                "id": "localemulator",
                "_rid": "localemulator",
                "_self": "",
                "DatabasesLink": "/dbs/",
                "MediaLink": "/media/",
                "MaxMediaStorageUsageInMB": self.max_media_storage_mb,
                "CurrentMediaStorageUsageInMB": current,
                "ConsistencyPolicy": {
                    "defaultConsistencyLevel": "Session",
                    "maxStalenessPrefix": 100,
                    "maxIntervalInSeconds": 5,
                },
            }
            headers = {
                HttpHeaders.MAX_MEDIA_STORAGE_USAGE_MB: str(self.max_media_storage_mb),
                HttpHeaders.CURRENT_MEDIA_STORAGE_USAGE_MB: str(current),
            }
            return OperationResult(body=body, headers=headers)

    async def clear(self) -> None:
        """Remove every resource. Used for testing purposes."""
        async with self._lock:
            self._databases.clear()
            self._nodes.clear()
            self._offers.clear()
            self._media.clear()
            self._tokens.clear()


def _default_indexing_policy() -> Dict[str, Any]:
    return {
        "automatic": True,
        "indexingMode": "consistent",
        "includedPaths": [{"path": "/*", "indexes": [{"kind": "Hash", "dataType": "String", "precision": 3}]}],
        "excludedPaths": [],
    }


def _check_content_type(content_type: str) -> None:
    major, _, minor = (content_type or "").partition("/")
    if not minor or major.strip().lower() not in MEDIA_MAJOR_TYPES:
        raise BadRequestError(f"Invalid content type '{content_type}'.")


def _encode_continuation(offset: int) -> str:
    return base64.b64encode(json.dumps({"offset": offset}).encode("utf-8")).decode("ascii")


def _decode_continuation(token: str) -> int:
    try:
        offset = json.loads(base64.b64decode(token, validate=True))["offset"]
    except (ValueError, KeyError, TypeError):
        raise BadRequestError("Invalid continuation token.") from None
    if not isinstance(offset, int) or offset < 0:
        raise BadRequestError("Invalid continuation token.")
    return offset

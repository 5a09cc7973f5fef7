"""
Resource addressing.

Computes canonical paths for resources under name-based and self-link
addressing, validates resource ids locally, and classifies link strings so
the request executor and authorization context know what a request targets.

Author: docdb Team
Date: 2025-12-11
"""

import base64
import binascii
import weakref
from abc import ABC, abstractmethod
from dataclasses import InitVar, dataclass
from enum import Enum
from typing import Any, Dict, List, Mapping, Optional, Tuple, Union

from .constants import ILLEGAL_ID_CHARS
from .exceptions import ValidationError


class ResourceKind(str, Enum):
    """Kinds of addressable resources."""
    DATABASE = "Database"
    COLLECTION = "Collection"
    DOCUMENT = "Document"
    ATTACHMENT = "Attachment"
    USER = "User"
    PERMISSION = "Permission"
    TRIGGER = "Trigger"
    UDF = "UDF"
    STORED_PROCEDURE = "StoredProcedure"
    OFFER = "Offer"
    CONFLICT = "Conflict"

    @property
    def segment(self) -> str:
        """Pluralised path segment, e.g. ``colls``."""
        return _SEGMENTS[self]

    @property
    def parent_kind(self) -> Optional["ResourceKind"]:
        return _PARENTS[self]

    @property
    def feed_key(self) -> str:
        """Name of the array holding the items of a feed page."""
        return _FEED_KEYS[self]

    @classmethod
    def from_segment(cls, segment: str) -> "ResourceKind":
        try:
            return _KINDS_BY_SEGMENT[segment.lower()]
        except KeyError:
            raise ValidationError(f"Unknown resource path segment: '{segment}'") from None


class AddressingMode(str, Enum):
    """How a resource path is built."""
    NAME_BASED = "name_based"
    SELF_LINK_BASED = "self_link_based"


_SEGMENTS: Dict[ResourceKind, str] = {
    ResourceKind.DATABASE: "dbs",
    ResourceKind.COLLECTION: "colls",
    ResourceKind.DOCUMENT: "docs",
    ResourceKind.ATTACHMENT: "attachments",
    ResourceKind.USER: "users",
    ResourceKind.PERMISSION: "permissions",
    ResourceKind.TRIGGER: "triggers",
    ResourceKind.UDF: "udfs",
    ResourceKind.STORED_PROCEDURE: "sprocs",
    ResourceKind.OFFER: "offers",
    ResourceKind.CONFLICT: "conflicts",
}

_PARENTS: Dict[ResourceKind, Optional[ResourceKind]] = {
    ResourceKind.DATABASE: None,
    ResourceKind.COLLECTION: ResourceKind.DATABASE,
    ResourceKind.DOCUMENT: ResourceKind.COLLECTION,
    ResourceKind.ATTACHMENT: ResourceKind.DOCUMENT,
    ResourceKind.USER: ResourceKind.DATABASE,
    ResourceKind.PERMISSION: ResourceKind.USER,
    ResourceKind.TRIGGER: ResourceKind.COLLECTION,
    ResourceKind.UDF: ResourceKind.COLLECTION,
    ResourceKind.STORED_PROCEDURE: ResourceKind.COLLECTION,
    ResourceKind.OFFER: None,
    ResourceKind.CONFLICT: ResourceKind.COLLECTION,
}

_FEED_KEYS: Dict[ResourceKind, str] = {
    ResourceKind.DATABASE: "Databases",
    ResourceKind.COLLECTION: "DocumentCollections",
    ResourceKind.DOCUMENT: "Documents",
    ResourceKind.ATTACHMENT: "Attachments",
    ResourceKind.USER: "Users",
    ResourceKind.PERMISSION: "Permissions",
    ResourceKind.TRIGGER: "Triggers",
    ResourceKind.UDF: "UserDefinedFunctions",
    ResourceKind.STORED_PROCEDURE: "StoredProcedures",
    ResourceKind.OFFER: "Offers",
    ResourceKind.CONFLICT: "Conflicts",
}

_KINDS_BY_SEGMENT: Dict[str, ResourceKind] = {seg: kind for kind, seg in _SEGMENTS.items()}

MEDIA_SEGMENT = "media"


# ========== Id validation ==========

def validate_id(resource_id: Any) -> str:
    """
    Validate a user-assigned resource id.

    Args:
        resource_id: Candidate id

    Returns:
        The id unchanged

    Raises:
        ValidationError: If the id is empty, ends with whitespace or
            contains one of ``/ \\ ? #``
    """
    if not isinstance(resource_id, str) or not resource_id:
        raise ValidationError("Id must be a non-empty string.")
    if resource_id[-1].isspace():
        raise ValidationError("Id ends with a space.")
    if any(c in ILLEGAL_ID_CHARS for c in resource_id):
        raise ValidationError("Id contains illegal chars.")
    return resource_id


# ========== Resource ids ==========

def decode_rid(rid: str) -> Optional[bytes]:
    """Decode a service resource id; ``None`` if it is not one."""
    try:
        return base64.b64decode(rid.replace("-", "/"), validate=True)
    except (binascii.Error, ValueError):
        return None


#: Resource id byte lengths of a document, a collection or user, and a
#: database. A resource id starts with the resource id of its parent.
RID_PREFIX_SIZES = (16, 8, 4)


def encode_rid(raw: bytes) -> str:
    return base64.b64encode(raw).decode("ascii").replace("/", "-")


def is_name_based(link: str) -> bool:
    """
    Tell whether a ``dbs/...`` link is built from ids rather than resource ids.

    A database resource id always decodes to exactly four bytes; anything
    else in the database position is a user-assigned id.
    """
    parts = trim_slashes(link).split("/")
    if len(parts) < 2 or parts[0].lower() != "dbs" or not parts[1]:
        return False
    raw = decode_rid(parts[1])
    return raw is None or len(raw) != 4


def trim_slashes(link: str) -> str:
    return link.strip("/")


# ========== Parsed links ==========

@dataclass(frozen=True)
class ResourceLink:
    """
    A classified request target.

    Attributes:
        path: Normalised path, without leading or trailing slashes
        kind: Kind of the item or of the feed's items; ``None`` for the
            account root and for media links
        is_feed: Whether the path addresses a feed rather than one item
        is_name_based: Whether the path is built from user-assigned ids
        resource_type: Resource type used when signing (``dbs``, ``docs``, ...)
        resource_link: Resource link used when signing
        resource_ids: Known resource ids, from the target up to its database
    """

    path: str
    kind: Optional[ResourceKind]
    is_feed: bool
    is_name_based: bool
    resource_type: str
    resource_link: str
    resource_ids: Tuple[str, ...] = ()

    @property
    def is_media(self) -> bool:
        return self.resource_type == MEDIA_SEGMENT

    @property
    def is_account(self) -> bool:
        return self.path == ""

    @property
    def depth(self) -> int:
        """Number of id segments in the path."""
        if not self.path:
            return 0
        return len(self.path.split("/")) // 2

    def child_feed(self, kind: ResourceKind) -> "ResourceLink":
        """Link of the feed of ``kind`` resources beneath this item."""
        if self.is_feed:
            raise ValidationError(f"Cannot address a feed beneath feed link '{self.path}'")
        link = parse_link(f"{self.path}/{kind.segment}")
        return _with_ids(link, self.resource_ids)

    def segment_pairs(self) -> List[Tuple[str, str]]:
        """(segment, id) pairs of the item part of the path."""
        parts = self.path.split("/") if self.path else []
        return [(parts[i], parts[i + 1]) for i in range(0, len(parts) - 1, 2)]


def _with_ids(link: ResourceLink, resource_ids: Tuple[str, ...]) -> ResourceLink:
    if link.is_name_based and resource_ids:
        return ResourceLink(
            path=link.path,
            kind=link.kind,
            is_feed=link.is_feed,
            is_name_based=link.is_name_based,
            resource_type=link.resource_type,
            resource_link=link.resource_link,
            resource_ids=resource_ids,
        )
    return link


def parse_link(link: str) -> ResourceLink:
    """
    Classify a link string.

    Args:
        link: Name-based path, self link, offer link, media link, or ``""``
            for the database account

    Returns:
        ResourceLink describing the target

    Raises:
        ValidationError: If the link does not follow the resource hierarchy
    """
    path = trim_slashes(link or "")
    if not path:
        return ResourceLink(path="", kind=None, is_feed=False, is_name_based=False,
                            resource_type="", resource_link="")

    parts = path.split("/")
    if any(not part for part in parts):
        raise ValidationError(f"Invalid resource link: '{link}'")

    head = parts[0].lower()
    if head == MEDIA_SEGMENT:
        if len(parts) != 2:
            raise ValidationError(f"Invalid media link: '{link}'")
        return ResourceLink(path=path, kind=None, is_feed=False, is_name_based=False,
                            resource_type=MEDIA_SEGMENT, resource_link=parts[1])

    if head == ResourceKind.OFFER.segment:
        if len(parts) > 2:
            raise ValidationError(f"Invalid offer link: '{link}'")
        is_feed = len(parts) == 1
        return ResourceLink(
            path=path,
            kind=ResourceKind.OFFER,
            is_feed=is_feed,
            is_name_based=False,
            resource_type=ResourceKind.OFFER.segment,
            resource_link="" if is_feed else parts[1].lower(),
            resource_ids=() if is_feed else (parts[1],),
        )

    # Walk (segment, id) pairs checking each kind hangs off the previous one
    parent_kind: Optional[ResourceKind] = None
    kind: Optional[ResourceKind] = None
    for index in range(0, len(parts), 2):
        kind = ResourceKind.from_segment(parts[index])
        if kind.parent_kind != parent_kind or kind == ResourceKind.OFFER:
            raise ValidationError(f"Invalid resource link: '{link}'")
        parent_kind = kind

    is_feed = len(parts) % 2 == 1
    name_based = is_name_based(path)
    resource_type = parts[-1] if is_feed else parts[-2]

    if name_based:
        for index in range(1, len(parts), 2):
            validate_id(parts[index])
        resource_link = "/".join(parts[:-1]) if is_feed else path
        resource_ids: Tuple[str, ...] = ()
    else:
        ids = [parts[i] for i in range(1, len(parts), 2)]
        resource_link = ids[-1] if ids else ""
        resource_ids = tuple(reversed(ids))

    return ResourceLink(
        path=path,
        kind=kind,
        is_feed=is_feed,
        is_name_based=name_based,
        resource_type=resource_type.lower(),
        resource_link=resource_link,
        resource_ids=resource_ids,
    )


# ========== Resource identity ==========

@dataclass(eq=False)
class ResourceIdentity:
    """
    Identity of a server resource.

    ``self_link`` and ``resource_id`` are assigned by the server and never
    change; ``id`` may change through a replace. The parent is held weakly:
    an identity never keeps its ancestors alive.
    """

    kind: ResourceKind
    id: Optional[str] = None
    self_link: Optional[str] = None
    resource_id: Optional[str] = None
    parent: InitVar[Optional["ResourceIdentity"]] = None

    def __post_init__(self, parent: Optional["ResourceIdentity"]) -> None:
        self._has_parent = parent is not None
        self._parent_ref: Optional[weakref.ref] = weakref.ref(parent) if parent is not None else None

    def get_parent(self) -> Optional["ResourceIdentity"]:
        """The enclosing identity, or ``None`` if there is none or it was collected."""
        if self._parent_ref is None:
            return None
        return self._parent_ref()

    @classmethod
    def from_record(
        cls,
        kind: ResourceKind,
        record: Mapping[str, Any],
        parent: Optional["ResourceIdentity"] = None,
    ) -> "ResourceIdentity":
        """Build an identity from a server record (``id``, ``_self``, ``_rid``)."""
        return cls(
            kind=kind,
            id=record.get("id"),
            self_link=record.get("_self"),
            resource_id=record.get("_rid"),
            parent=parent,
        )

    def ancestors(self) -> List["ResourceIdentity"]:
        """
        Identities from the outermost ancestor down to this one.

        Raises:
            ValidationError: If a weakly referenced ancestor no longer exists
                or the chain does not follow the resource hierarchy
        """
        chain: List[ResourceIdentity] = [self]
        node = self
        while node.kind.parent_kind is not None:
            parent = node.get_parent()
            if parent is None:
                detail = "is no longer available" if node._has_parent else "is missing"
                raise ValidationError(
                    f"{node.kind.value} '{node.id}': ancestor {node.kind.parent_kind.value} {detail}"
                )
            if parent.kind != node.kind.parent_kind:
                raise ValidationError(
                    f"{node.kind.value} cannot be nested in {parent.kind.value}"
                )
            chain.append(parent)
            node = parent
        chain.reverse()
        return chain

    def known_resource_ids(self) -> Tuple[str, ...]:
        """Resource ids from this identity upwards, stopping at the first unknown."""
        ids: List[str] = []
        node: Optional[ResourceIdentity] = self
        while node is not None and node.resource_id:
            ids.append(node.resource_id)
            node = node.get_parent()
        return tuple(ids)


# ========== Addressing strategies ==========

class AddressingStrategy(ABC):
    """Builds the path of a resource identity."""

    mode: AddressingMode

    @abstractmethod
    def resolve(self, identity: ResourceIdentity) -> str:
        """Return the canonical path of ``identity``."""


class NameBasedAddressing(AddressingStrategy):
    """``dbs/{id}/colls/{id}/docs/{id}`` paths built from ancestor ids."""

    mode = AddressingMode.NAME_BASED

    def resolve(self, identity: ResourceIdentity) -> str:
        segments: List[str] = []
        for node in identity.ancestors():
            if not node.id:
                raise ValidationError(
                    f"{node.kind.value} has no id; cannot build a name-based link"
                )
            validate_id(node.id)
            segments.append(node.kind.segment)
            segments.append(node.id)
        return "/".join(segments)


class SelfLinkAddressing(AddressingStrategy):
    """The server-issued ``_self`` link, verbatim."""

    mode = AddressingMode.SELF_LINK_BASED

    def resolve(self, identity: ResourceIdentity) -> str:
        if identity.id is not None:
            validate_id(identity.id)
        if not identity.self_link:
            raise ValidationError(
                f"{identity.kind.value} '{identity.id}' has no self link; "
                "it must be read from the server before self-link addressing can be used"
            )
        return trim_slashes(identity.self_link)


_STRATEGIES: Dict[AddressingMode, AddressingStrategy] = {
    AddressingMode.NAME_BASED: NameBasedAddressing(),
    AddressingMode.SELF_LINK_BASED: SelfLinkAddressing(),
}


def get_strategy(mode: Union[AddressingMode, str]) -> AddressingStrategy:
    return _STRATEGIES[AddressingMode(mode)]


def resolve(identity: ResourceIdentity, mode: Union[AddressingMode, str]) -> str:
    """
    Resolve an identity to a path.

    Args:
        identity: Resource identity
        mode: Addressing mode

    Returns:
        Path without leading or trailing slashes

    Raises:
        ValidationError: If the identity lacks what ``mode`` needs
    """
    return get_strategy(mode).resolve(identity)


LinkLike = Union[str, ResourceIdentity, ResourceLink]


def to_link(target: LinkLike, mode: Union[AddressingMode, str]) -> ResourceLink:
    """
    Normalise a link string, identity or parsed link into a ``ResourceLink``.

    Identities are resolved with ``mode`` and keep their known resource ids
    so that token lookups work for name-based paths too.
    """
    if isinstance(target, ResourceLink):
        return target
    if isinstance(target, ResourceIdentity):
        link = parse_link(resolve(target, mode))
        return _with_ids(link, target.known_resource_ids())
    if isinstance(target, str):
        return parse_link(target)
    raise ValidationError(f"Unsupported link type: {type(target).__name__}")

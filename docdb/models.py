"""
Client Models.

Pydantic models for queries, feed options and per-request options.

Author: docdb Team
Date: 2025-12-11
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator

from .constants import HttpHeaders


class MediaReadMode(str, Enum):
    """How attachment media is returned."""
    BUFFERED = "Buffered"
    STREAMED = "Streamed"


class IndexingDirective(str, Enum):
    """Per-request indexing override."""
    DEFAULT = "Default"
    INCLUDE = "Include"
    EXCLUDE = "Exclude"


class QueryParameter(BaseModel):
    """Named query parameter.

    Attributes:
        name: Parameter name, starting with '@'
        value: Parameter value
    """

    name: str
    value: Any = None

    @field_validator("name")
    @classmethod
    def validate_name(cls, v: str) -> str:
        if not v.startswith("@"):
            raise ValueError(f"Query parameter name must start with '@': {v}")
        return v


class QuerySpec(BaseModel):
    """SQL query with ordered parameters.

    Attributes:
        query: SQL query text
        parameters: Ordered parameters
    """

    query: str
    parameters: List[QueryParameter] = Field(default_factory=list)

    model_config = ConfigDict(populate_by_name=True)

    @classmethod
    def coerce(cls, query: Union[str, "QuerySpec", Dict[str, Any]]) -> "QuerySpec":
        """Accept a bare string, a mapping or a ``QuerySpec``."""
        if isinstance(query, QuerySpec):
            return query
        if isinstance(query, str):
            return cls(query=query)
        return cls.model_validate(query)

    def to_body(self) -> Dict[str, Any]:
        return {
            "query": self.query,
            "parameters": [p.model_dump() for p in self.parameters],
        }


class FeedOptions(BaseModel):
    """Options for read-feed and query operations.

    Attributes:
        max_item_count: Upper bound on the page size (server default if unset)
        enable_scan_in_query: Allow full-scan query plans
        continuation: Opaque token to resume a feed
        session_token: Session consistency token
    """

    max_item_count: Optional[int] = Field(default=None, alias="maxItemCount", gt=0)
    enable_scan_in_query: Optional[bool] = Field(default=None, alias="enableScanInQuery")
    continuation: Optional[str] = None
    session_token: Optional[str] = Field(default=None, alias="sessionToken")

    model_config = ConfigDict(populate_by_name=True)

    def to_headers(self) -> Dict[str, str]:
        headers: Dict[str, str] = {}
        if self.max_item_count is not None:
            headers[HttpHeaders.MAX_ITEM_COUNT] = str(self.max_item_count)
        if self.enable_scan_in_query is not None:
            headers[HttpHeaders.ENABLE_SCAN_IN_QUERY] = str(self.enable_scan_in_query).lower()
        if self.session_token:
            headers[HttpHeaders.SESSION_TOKEN] = self.session_token
        return headers


class RequestOptions(BaseModel):
    """Options for single-resource operations.

    Attributes:
        pre_trigger_include: Trigger id(s) to run before the operation
        post_trigger_include: Trigger id(s) to run after the operation
        if_match_etag: Only apply if the resource still has this ETag
        indexing_directive: Include/exclude the document from indexing
        consistency_level: Per-request consistency override
        session_token: Session consistency token
        offer_type: Performance level for a new collection (S1, S2, S3)
        idempotent_replay: Allow the executor to replay a create after a
            server or connection failure
        disable_automatic_id_generation: Do not assign a random id to a
            document created without one
    """

    pre_trigger_include: Optional[Union[str, List[str]]] = Field(default=None, alias="preTriggerInclude")
    post_trigger_include: Optional[Union[str, List[str]]] = Field(default=None, alias="postTriggerInclude")
    if_match_etag: Optional[str] = Field(default=None, alias="ifMatch")
    indexing_directive: Optional[IndexingDirective] = Field(default=None, alias="indexingDirective")
    consistency_level: Optional[str] = Field(default=None, alias="consistencyLevel")
    session_token: Optional[str] = Field(default=None, alias="sessionToken")
    offer_type: Optional[str] = Field(default=None, alias="offerType")
    idempotent_replay: bool = Field(default=False, alias="idempotentReplay")
    disable_automatic_id_generation: bool = Field(default=False, alias="disableAutomaticIdGeneration")

    model_config = ConfigDict(populate_by_name=True)

    def to_headers(self) -> Dict[str, str]:
        headers: Dict[str, str] = {}
        if self.pre_trigger_include:
            headers[HttpHeaders.PRE_TRIGGER_INCLUDE] = _join(self.pre_trigger_include)
        if self.post_trigger_include:
            headers[HttpHeaders.POST_TRIGGER_INCLUDE] = _join(self.post_trigger_include)
        if self.if_match_etag:
            headers[HttpHeaders.IF_MATCH] = self.if_match_etag
        if self.indexing_directive:
            headers[HttpHeaders.INDEXING_DIRECTIVE] = self.indexing_directive.value
        if self.consistency_level:
            headers[HttpHeaders.CONSISTENCY_LEVEL] = self.consistency_level
        if self.session_token:
            headers[HttpHeaders.SESSION_TOKEN] = self.session_token
        if self.offer_type:
            headers[HttpHeaders.OFFER_TYPE] = self.offer_type
        return headers


class MediaOptions(BaseModel):
    """Options for attachment media uploads.

    Attributes:
        slug: Id of the attachment created for the media
        content_type: MIME type of the media
    """

    slug: Optional[str] = None
    content_type: str = Field(default="application/octet-stream", alias="contentType")

    model_config = ConfigDict(populate_by_name=True)


class DatabaseAccount(BaseModel):
    """Database account properties.

    Attributes:
        databases_link: Link of the databases feed
        media_link: Link prefix of attachment media
        max_media_storage_usage_mb: Media storage quota
        current_media_storage_usage_mb: Media storage in use
        consistency_policy: Default consistency settings of the account
    """

    id: Optional[str] = None
    databases_link: str = Field(default="/dbs/", alias="DatabasesLink")
    media_link: str = Field(default="/media/", alias="MediaLink")
    max_media_storage_usage_mb: int = Field(default=0, alias="MaxMediaStorageUsageInMB")
    current_media_storage_usage_mb: int = Field(default=0, alias="CurrentMediaStorageUsageInMB")
    consistency_policy: Dict[str, Any] = Field(default_factory=dict, alias="ConsistencyPolicy")

    model_config = ConfigDict(populate_by_name=True)

    @classmethod
    def from_response(cls, record: Optional[Dict[str, Any]], headers: Dict[str, str]) -> "DatabaseAccount":
        """Build the account from the response body, preferring the usage headers."""
        data = dict(record or {})
        if HttpHeaders.MAX_MEDIA_STORAGE_USAGE_MB in headers:
            data["MaxMediaStorageUsageInMB"] = int(headers[HttpHeaders.MAX_MEDIA_STORAGE_USAGE_MB])
        if HttpHeaders.CURRENT_MEDIA_STORAGE_USAGE_MB in headers:
            data["CurrentMediaStorageUsageInMB"] = int(headers[HttpHeaders.CURRENT_MEDIA_STORAGE_USAGE_MB])
        return cls.model_validate(data)


def _join(value: Union[str, List[str]]) -> str:
    if isinstance(value, str):
        return value
    return ",".join(value)


@dataclass
class FeedPage:
    """One page of a feed.

    An empty or missing ``continuation`` means the source has declared the
    feed complete.
    """

    items: List[Dict[str, Any]]
    continuation: Optional[str] = None
    headers: Dict[str, str] = field(default_factory=dict)

    @property
    def is_last(self) -> bool:
        return not self.continuation

"""
Protocol constants shared by the client and the emulator.

Header names, path segments and resource-type names used on the wire.
"""


class HttpHeaders:
    """Request and response header names."""

    AUTHORIZATION = "authorization"
    CONTENT_TYPE = "content-type"
    ETAG = "etag"
    IF_MATCH = "if-match"
    IF_NONE_MATCH = "if-none-match"
    SLUG = "slug"
    X_DATE = "x-ms-date"
    VERSION = "x-ms-version"
    ACTIVITY_ID = "x-ms-activity-id"
    CONTINUATION = "x-ms-continuation"
    MAX_ITEM_COUNT = "x-ms-max-item-count"
    ITEM_COUNT = "x-ms-item-count"
    SESSION_TOKEN = "x-ms-session-token"
    IS_QUERY = "x-ms-documentdb-isquery"
    ENABLE_SCAN_IN_QUERY = "x-ms-documentdb-query-enable-scan"
    IS_UPSERT = "x-ms-documentdb-is-upsert"
    PRE_TRIGGER_INCLUDE = "x-ms-documentdb-pre-trigger-include"
    POST_TRIGGER_INCLUDE = "x-ms-documentdb-post-trigger-include"
    INDEXING_DIRECTIVE = "x-ms-indexing-directive"
    CONSISTENCY_LEVEL = "x-ms-consistency-level"
    OFFER_TYPE = "x-ms-offer-type"
    RETRY_AFTER = "retry-after"
    RETRY_AFTER_MS = "x-ms-retry-after-ms"
    REQUEST_CHARGE = "x-ms-request-charge"
    INDEX_TRANSFORMATION_PROGRESS = "x-ms-documentdb-collection-index-transformation-progress"
    LAZY_INDEXING_PROGRESS = "x-ms-documentdb-collection-lazy-indexing-progress"
    MAX_MEDIA_STORAGE_USAGE_MB = "x-ms-max-media-storage-usage-mb"
    CURRENT_MEDIA_STORAGE_USAGE_MB = "x-ms-media-storage-usage-mb"


class MediaTypes:
    """Content types understood by the service."""

    JSON = "application/json"
    QUERY_JSON = "application/query+json"
    OCTET_STREAM = "application/octet-stream"
    TEXT = "text/plain"


API_VERSION = "2015-08-06"

# Content types accepted for attachment media uploads (major type only)
MEDIA_MAJOR_TYPES = frozenset({
    "application", "audio", "image", "text", "video", "multipart", "font", "model",
})

DEFAULT_PAGE_SIZE = 100

# Characters never allowed inside a resource id
ILLEGAL_ID_CHARS = frozenset("/\\?#")

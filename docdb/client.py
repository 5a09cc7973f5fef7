"""
Document client.

CRUD, feed, query and media operations for every resource kind, composed
from the link resolver, the authorization context, the request executor and
the query iterator. Every single-resource operation returns a tuple of
(record, response headers); every feed or query operation returns a
``QueryIterator``.

Author: docdb Team
Date: 2025-12-12
"""

import logging
import uuid
from typing import Any, AsyncIterable, Dict, Iterable, List, Mapping, Optional, Tuple, Union

from .auth import AuthorizationContext
from .constants import HttpHeaders, MediaTypes
from .core.config_manager import ClientConfig, ConnectionPolicy
from .exceptions import ValidationError
from .executor import RequestExecutor
from .links import (
    AddressingMode,
    LinkLike,
    ResourceIdentity,
    ResourceKind,
    ResourceLink,
    parse_link,
    resolve,
    to_link,
    validate_id,
)
from .models import (
    DatabaseAccount,
    FeedOptions,
    FeedPage,
    MediaOptions,
    MediaReadMode,
    QuerySpec,
    RequestOptions,
)
from .query_iterator import QueryIterator
from .transport import HttpxTransport, Serializer, Transport

logger = logging.getLogger(__name__)

Record = Dict[str, Any]
Headers = Dict[str, str]
Query = Union[str, QuerySpec, Dict[str, Any]]
MediaContent = Union[bytes, AsyncIterable[bytes]]

_SCRIPT_KINDS = frozenset({ResourceKind.TRIGGER, ResourceKind.UDF, ResourceKind.STORED_PROCEDURE})


class DocumentClient:
    """
    Client of a document database account.

    Exactly one credential source is used: ``master_key``, else
    ``resource_tokens`` (resource id to token), else ``permission_feed``
    (permission records carrying ``_token`` and ``resource``).

    Links may be given as strings (name-based or self links), as
    ``ResourceIdentity`` objects resolved with the client's addressing mode,
    or as parsed ``ResourceLink`` objects.

    Token clients pick a token by resource id. A name-based string link
    carries no resource ids, so it is only usable when the client holds a
    single token (the server then enforces its scope); clients holding
    several tokens should pass self links or identities.

    Example:
        >>> async with DocumentClient("https://localhost:8081/", master_key=key) as client:
        ...     db, _ = await client.create_database({"id": "db1"})
        ...     docs = await client.read_documents("dbs/db1/colls/c1").to_list()
    """

    def __init__(
        self,
        endpoint: Optional[str] = None,
        master_key: Optional[str] = None,
        resource_tokens: Optional[Mapping[str, str]] = None,
        permission_feed: Optional[Iterable[Mapping[str, Any]]] = None,
        connection_policy: Optional[ConnectionPolicy] = None,
        *,
        config: Optional[ClientConfig] = None,
        transport: Optional[Transport] = None,
        serializer: Optional[Serializer] = None,
    ):
        if endpoint is not None:
            config = (config or ClientConfig()).model_copy(
                update={"endpoint": ClientConfig(endpoint=endpoint).endpoint}
            )
        config = config or ClientConfig()
        self.endpoint = config.endpoint
        self.connection_policy = connection_policy or config.connection_policy

        self.auth = AuthorizationContext(
            master_key=master_key or config.master_key,
            resource_tokens=resource_tokens if resource_tokens is not None else config.resource_tokens,
            permission_feed=permission_feed,
        )
        self._transport = transport or HttpxTransport(
            self.endpoint, verify=self.connection_policy.verify_ssl
        )
        self._executor = RequestExecutor(
            self._transport, self.auth, self.connection_policy, serializer
        )
        self.addressing_mode = self.connection_policy.addressing_mode

    @classmethod
    def from_config(cls, config: ClientConfig, **kwargs: Any) -> "DocumentClient":
        """Build a client from a loaded ``ClientConfig``."""
        return cls(config=config, **kwargs)

    def with_addressing_mode(self, mode: Union[AddressingMode, str]) -> "DocumentClient":
        """
        A view of this client resolving identities with ``mode``.

        The view shares the credentials, transport and executor.
        """
        view = object.__new__(DocumentClient)
        view.__dict__.update(self.__dict__)
        view.addressing_mode = AddressingMode(mode)
        return view

    async def close(self) -> None:
        await self._transport.close()

    async def __aenter__(self) -> "DocumentClient":
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.close()

    def resolve(self, identity: ResourceIdentity, mode: Optional[Union[AddressingMode, str]] = None) -> str:
        """Path of ``identity`` under ``mode`` (the client's mode by default)."""
        return resolve(identity, mode or self.addressing_mode)

    # ========== Databases ==========

    async def create_database(self, body: Record, options: Optional[RequestOptions] = None) -> Tuple[Record, Headers]:
        return await self._create(ResourceKind.DATABASE, None, body, options)

    async def read_database(self, database_link: LinkLike, options: Optional[RequestOptions] = None) -> Tuple[Record, Headers]:
        return await self._read(ResourceKind.DATABASE, database_link, options)

    async def delete_database(self, database_link: LinkLike, options: Optional[RequestOptions] = None) -> Tuple[Record, Headers]:
        return await self._delete(ResourceKind.DATABASE, database_link, options)

    def read_databases(self, options: Optional[FeedOptions] = None) -> QueryIterator:
        return self._read_feed(ResourceKind.DATABASE, None, options)

    def query_databases(self, query: Query, options: Optional[FeedOptions] = None) -> QueryIterator:
        return self._query_feed(ResourceKind.DATABASE, None, query, options)

    # ========== Collections ==========

    async def create_collection(
        self,
        database_link: LinkLike,
        body: Record,
        options: Optional[RequestOptions] = None,
    ) -> Tuple[Record, Headers]:
        """
        Create a collection.

        ``options.offer_type`` selects the performance level; the indexing
        policy in ``body`` is passed through untouched.
        """
        return await self._create(ResourceKind.COLLECTION, database_link, body, options)

    async def read_collection(self, collection_link: LinkLike, options: Optional[RequestOptions] = None) -> Tuple[Record, Headers]:
        """
        Read a collection.

        The response headers carry the index transformation progress and,
        for lazily indexed collections, the lazy indexing progress.
        """
        return await self._read(ResourceKind.COLLECTION, collection_link, options)

    async def replace_collection(
        self,
        collection_link: LinkLike,
        body: Record,
        options: Optional[RequestOptions] = None,
    ) -> Tuple[Record, Headers]:
        return await self._replace(ResourceKind.COLLECTION, collection_link, body, options)

    async def delete_collection(self, collection_link: LinkLike, options: Optional[RequestOptions] = None) -> Tuple[Record, Headers]:
        return await self._delete(ResourceKind.COLLECTION, collection_link, options)

    def read_collections(self, database_link: LinkLike, options: Optional[FeedOptions] = None) -> QueryIterator:
        return self._read_feed(ResourceKind.COLLECTION, database_link, options)

    def query_collections(self, database_link: LinkLike, query: Query, options: Optional[FeedOptions] = None) -> QueryIterator:
        return self._query_feed(ResourceKind.COLLECTION, database_link, query, options)

    # ========== Documents ==========

    async def create_document(
        self,
        collection_link: LinkLike,
        body: Record,
        options: Optional[RequestOptions] = None,
    ) -> Tuple[Record, Headers]:
        """
        Create a document.

        A random id is assigned when ``body`` has none, unless
        ``options.disable_automatic_id_generation`` is set.
        """
        return await self._create(ResourceKind.DOCUMENT, collection_link, self._with_document_id(body, options), options)

    async def upsert_document(
        self,
        collection_link: LinkLike,
        body: Record,
        options: Optional[RequestOptions] = None,
    ) -> Tuple[Record, Headers]:
        """Create a document, or replace the sibling with the same id."""
        return await self._create(
            ResourceKind.DOCUMENT, collection_link, self._with_document_id(body, options), options, upsert=True
        )

    async def read_document(self, document_link: LinkLike, options: Optional[RequestOptions] = None) -> Tuple[Record, Headers]:
        return await self._read(ResourceKind.DOCUMENT, document_link, options)

    async def replace_document(
        self,
        document_link: LinkLike,
        body: Record,
        options: Optional[RequestOptions] = None,
    ) -> Tuple[Record, Headers]:
        return await self._replace(ResourceKind.DOCUMENT, document_link, body, options)

    async def delete_document(self, document_link: LinkLike, options: Optional[RequestOptions] = None) -> Tuple[Record, Headers]:
        return await self._delete(ResourceKind.DOCUMENT, document_link, options)

    def read_documents(self, collection_link: LinkLike, options: Optional[FeedOptions] = None) -> QueryIterator:
        return self._read_feed(ResourceKind.DOCUMENT, collection_link, options)

    def query_documents(self, collection_link: LinkLike, query: Query, options: Optional[FeedOptions] = None) -> QueryIterator:
        return self._query_feed(ResourceKind.DOCUMENT, collection_link, query, options)

    # ========== Attachments and media ==========

    async def create_attachment(
        self,
        document_link: LinkLike,
        body: Record,
        options: Optional[RequestOptions] = None,
    ) -> Tuple[Record, Headers]:
        """Create an attachment pointing at external media (``contentType`` and ``media``)."""
        return await self._create(ResourceKind.ATTACHMENT, document_link, body, options)

    async def upsert_attachment(
        self,
        document_link: LinkLike,
        body: Record,
        options: Optional[RequestOptions] = None,
    ) -> Tuple[Record, Headers]:
        return await self._create(ResourceKind.ATTACHMENT, document_link, body, options, upsert=True)

    async def create_attachment_and_upload_media(
        self,
        document_link: LinkLike,
        content: MediaContent,
        media_options: Optional[MediaOptions] = None,
        options: Optional[RequestOptions] = None,
    ) -> Tuple[Record, Headers]:
        """
        Upload media and create the attachment that references it.

        Args:
            document_link: Owning document
            content: Media bytes or an async iterable of chunks
            media_options: ``slug`` (attachment id) and ``content_type``
            options: Request options

        Returns:
            Tuple of (attachment record, response headers)

        Raises:
            ValidationError: If the slug is not a valid id
        """
        media_options = media_options or MediaOptions()
        options = options or RequestOptions()
        link = self._item_link(document_link, ResourceKind.DOCUMENT).child_feed(ResourceKind.ATTACHMENT)

        headers = self._media_headers(media_options)
        headers.update(options.to_headers())
        return await self._executor.execute(
            "POST",
            link,
            body=content,
            headers=headers,
            idempotent=options.idempotent_replay,
            timeout=self.connection_policy.media_request_timeout,
        )

    async def read_media(self, media_link: str) -> Tuple[Union[bytes, AsyncIterable[bytes]], Headers]:
        """
        Read attachment media.

        Returns:
            Tuple of (content, response headers). The content is ``bytes``
            under the ``Buffered`` media read mode and an async iterator of
            chunks under ``Streamed``.
        """
        link = self._media_link(media_link)
        streamed = self.connection_policy.media_read_mode == MediaReadMode.STREAMED
        return await self._executor.execute(
            "GET",
            link,
            timeout=self.connection_policy.media_request_timeout,
            raw=not streamed,
            stream=streamed,
        )

    async def update_media(
        self,
        media_link: str,
        content: MediaContent,
        media_options: Optional[MediaOptions] = None,
    ) -> Tuple[Record, Headers]:
        """Replace attachment media in place."""
        link = self._media_link(media_link)
        headers = self._media_headers(media_options or MediaOptions())
        return await self._executor.execute(
            "PUT",
            link,
            body=content,
            headers=headers,
            timeout=self.connection_policy.media_request_timeout,
        )

    async def read_attachment(self, attachment_link: LinkLike, options: Optional[RequestOptions] = None) -> Tuple[Record, Headers]:
        return await self._read(ResourceKind.ATTACHMENT, attachment_link, options)

    async def replace_attachment(
        self,
        attachment_link: LinkLike,
        body: Record,
        options: Optional[RequestOptions] = None,
    ) -> Tuple[Record, Headers]:
        return await self._replace(ResourceKind.ATTACHMENT, attachment_link, body, options)

    async def delete_attachment(self, attachment_link: LinkLike, options: Optional[RequestOptions] = None) -> Tuple[Record, Headers]:
        return await self._delete(ResourceKind.ATTACHMENT, attachment_link, options)

    def read_attachments(self, document_link: LinkLike, options: Optional[FeedOptions] = None) -> QueryIterator:
        return self._read_feed(ResourceKind.ATTACHMENT, document_link, options)

    def query_attachments(self, document_link: LinkLike, query: Query, options: Optional[FeedOptions] = None) -> QueryIterator:
        return self._query_feed(ResourceKind.ATTACHMENT, document_link, query, options)

    # ========== Users and permissions ==========

    async def create_user(self, database_link: LinkLike, body: Record, options: Optional[RequestOptions] = None) -> Tuple[Record, Headers]:
        return await self._create(ResourceKind.USER, database_link, body, options)

    async def upsert_user(self, database_link: LinkLike, body: Record, options: Optional[RequestOptions] = None) -> Tuple[Record, Headers]:
        return await self._create(ResourceKind.USER, database_link, body, options, upsert=True)

    async def read_user(self, user_link: LinkLike, options: Optional[RequestOptions] = None) -> Tuple[Record, Headers]:
        return await self._read(ResourceKind.USER, user_link, options)

    async def replace_user(self, user_link: LinkLike, body: Record, options: Optional[RequestOptions] = None) -> Tuple[Record, Headers]:
        return await self._replace(ResourceKind.USER, user_link, body, options)

    async def delete_user(self, user_link: LinkLike, options: Optional[RequestOptions] = None) -> Tuple[Record, Headers]:
        return await self._delete(ResourceKind.USER, user_link, options)

    def read_users(self, database_link: LinkLike, options: Optional[FeedOptions] = None) -> QueryIterator:
        return self._read_feed(ResourceKind.USER, database_link, options)

    def query_users(self, database_link: LinkLike, query: Query, options: Optional[FeedOptions] = None) -> QueryIterator:
        return self._query_feed(ResourceKind.USER, database_link, query, options)

    async def create_permission(self, user_link: LinkLike, body: Record, options: Optional[RequestOptions] = None) -> Tuple[Record, Headers]:
        """
        Grant a user access to a resource.

        ``body`` carries ``permissionMode`` (``Read`` or ``All``) and the
        ``resource`` link; the returned record holds the token in ``_token``.
        """
        return await self._create(ResourceKind.PERMISSION, user_link, body, options)

    async def upsert_permission(self, user_link: LinkLike, body: Record, options: Optional[RequestOptions] = None) -> Tuple[Record, Headers]:
        return await self._create(ResourceKind.PERMISSION, user_link, body, options, upsert=True)

    async def read_permission(self, permission_link: LinkLike, options: Optional[RequestOptions] = None) -> Tuple[Record, Headers]:
        return await self._read(ResourceKind.PERMISSION, permission_link, options)

    async def replace_permission(
        self,
        permission_link: LinkLike,
        body: Record,
        options: Optional[RequestOptions] = None,
    ) -> Tuple[Record, Headers]:
        return await self._replace(ResourceKind.PERMISSION, permission_link, body, options)

    async def delete_permission(self, permission_link: LinkLike, options: Optional[RequestOptions] = None) -> Tuple[Record, Headers]:
        return await self._delete(ResourceKind.PERMISSION, permission_link, options)

    def read_permissions(self, user_link: LinkLike, options: Optional[FeedOptions] = None) -> QueryIterator:
        return self._read_feed(ResourceKind.PERMISSION, user_link, options)

    def query_permissions(self, user_link: LinkLike, query: Query, options: Optional[FeedOptions] = None) -> QueryIterator:
        return self._query_feed(ResourceKind.PERMISSION, user_link, query, options)

    # ========== Triggers, UDFs and stored procedures ==========

    async def create_trigger(self, collection_link: LinkLike, body: Record, options: Optional[RequestOptions] = None) -> Tuple[Record, Headers]:
        return await self._create(ResourceKind.TRIGGER, collection_link, body, options)

    async def upsert_trigger(self, collection_link: LinkLike, body: Record, options: Optional[RequestOptions] = None) -> Tuple[Record, Headers]:
        return await self._create(ResourceKind.TRIGGER, collection_link, body, options, upsert=True)

    async def read_trigger(self, trigger_link: LinkLike, options: Optional[RequestOptions] = None) -> Tuple[Record, Headers]:
        return await self._read(ResourceKind.TRIGGER, trigger_link, options)

    async def replace_trigger(self, trigger_link: LinkLike, body: Record, options: Optional[RequestOptions] = None) -> Tuple[Record, Headers]:
        return await self._replace(ResourceKind.TRIGGER, trigger_link, body, options)

    async def delete_trigger(self, trigger_link: LinkLike, options: Optional[RequestOptions] = None) -> Tuple[Record, Headers]:
        return await self._delete(ResourceKind.TRIGGER, trigger_link, options)

    def read_triggers(self, collection_link: LinkLike, options: Optional[FeedOptions] = None) -> QueryIterator:
        return self._read_feed(ResourceKind.TRIGGER, collection_link, options)

    def query_triggers(self, collection_link: LinkLike, query: Query, options: Optional[FeedOptions] = None) -> QueryIterator:
        return self._query_feed(ResourceKind.TRIGGER, collection_link, query, options)

    async def create_udf(self, collection_link: LinkLike, body: Record, options: Optional[RequestOptions] = None) -> Tuple[Record, Headers]:
        return await self._create(ResourceKind.UDF, collection_link, body, options)

    async def upsert_udf(self, collection_link: LinkLike, body: Record, options: Optional[RequestOptions] = None) -> Tuple[Record, Headers]:
        return await self._create(ResourceKind.UDF, collection_link, body, options, upsert=True)

    async def read_udf(self, udf_link: LinkLike, options: Optional[RequestOptions] = None) -> Tuple[Record, Headers]:
        return await self._read(ResourceKind.UDF, udf_link, options)

    async def replace_udf(self, udf_link: LinkLike, body: Record, options: Optional[RequestOptions] = None) -> Tuple[Record, Headers]:
        return await self._replace(ResourceKind.UDF, udf_link, body, options)

    async def delete_udf(self, udf_link: LinkLike, options: Optional[RequestOptions] = None) -> Tuple[Record, Headers]:
        return await self._delete(ResourceKind.UDF, udf_link, options)

    def read_udfs(self, collection_link: LinkLike, options: Optional[FeedOptions] = None) -> QueryIterator:
        return self._read_feed(ResourceKind.UDF, collection_link, options)

    def query_udfs(self, collection_link: LinkLike, query: Query, options: Optional[FeedOptions] = None) -> QueryIterator:
        return self._query_feed(ResourceKind.UDF, collection_link, query, options)

    async def create_stored_procedure(
        self,
        collection_link: LinkLike,
        body: Record,
        options: Optional[RequestOptions] = None,
    ) -> Tuple[Record, Headers]:
        return await self._create(ResourceKind.STORED_PROCEDURE, collection_link, body, options)

    async def upsert_stored_procedure(
        self,
        collection_link: LinkLike,
        body: Record,
        options: Optional[RequestOptions] = None,
    ) -> Tuple[Record, Headers]:
        return await self._create(ResourceKind.STORED_PROCEDURE, collection_link, body, options, upsert=True)

    async def read_stored_procedure(self, sproc_link: LinkLike, options: Optional[RequestOptions] = None) -> Tuple[Record, Headers]:
        return await self._read(ResourceKind.STORED_PROCEDURE, sproc_link, options)

    async def replace_stored_procedure(
        self,
        sproc_link: LinkLike,
        body: Record,
        options: Optional[RequestOptions] = None,
    ) -> Tuple[Record, Headers]:
        return await self._replace(ResourceKind.STORED_PROCEDURE, sproc_link, body, options)

    async def delete_stored_procedure(self, sproc_link: LinkLike, options: Optional[RequestOptions] = None) -> Tuple[Record, Headers]:
        return await self._delete(ResourceKind.STORED_PROCEDURE, sproc_link, options)

    def read_stored_procedures(self, collection_link: LinkLike, options: Optional[FeedOptions] = None) -> QueryIterator:
        return self._read_feed(ResourceKind.STORED_PROCEDURE, collection_link, options)

    def query_stored_procedures(
        self,
        collection_link: LinkLike,
        query: Query,
        options: Optional[FeedOptions] = None,
    ) -> QueryIterator:
        return self._query_feed(ResourceKind.STORED_PROCEDURE, collection_link, query, options)

    async def execute_stored_procedure(
        self,
        sproc_link: LinkLike,
        params: Any = None,
        options: Optional[RequestOptions] = None,
    ) -> Tuple[Any, Headers]:
        """
        Execute a stored procedure.

        Args:
            sproc_link: Stored procedure to run
            params: Argument list; a single non-list value is wrapped in a list
            options: Request options; executions are only replayed after a
                server failure when ``idempotent_replay`` is set

        Returns:
            Tuple of (procedure result, response headers)
        """
        options = options or RequestOptions()
        link = self._item_link(sproc_link, ResourceKind.STORED_PROCEDURE)
        if params is not None and not isinstance(params, list):
            params = [params]
        return await self._executor.execute(
            "POST",
            link,
            body=params if params is not None else [],
            headers=options.to_headers(),
            idempotent=options.idempotent_replay,
        )

    # ========== Conflicts ==========

    async def read_conflict(self, conflict_link: LinkLike, options: Optional[RequestOptions] = None) -> Tuple[Record, Headers]:
        return await self._read(ResourceKind.CONFLICT, conflict_link, options)

    async def delete_conflict(self, conflict_link: LinkLike, options: Optional[RequestOptions] = None) -> Tuple[Record, Headers]:
        return await self._delete(ResourceKind.CONFLICT, conflict_link, options)

    def read_conflicts(self, collection_link: LinkLike, options: Optional[FeedOptions] = None) -> QueryIterator:
        return self._read_feed(ResourceKind.CONFLICT, collection_link, options)

    def query_conflicts(self, collection_link: LinkLike, query: Query, options: Optional[FeedOptions] = None) -> QueryIterator:
        return self._query_feed(ResourceKind.CONFLICT, collection_link, query, options)

    # ========== Offers ==========

    async def read_offer(self, offer_link: LinkLike) -> Tuple[Record, Headers]:
        return await self._read(ResourceKind.OFFER, offer_link, None)

    async def replace_offer(self, offer_link: LinkLike, offer: Record) -> Tuple[Record, Headers]:
        """Change the performance level (``offerType``) of a collection."""
        link = self._item_link(offer_link, ResourceKind.OFFER)
        return await self._executor.execute("PUT", link, body=dict(offer))

    def read_offers(self, options: Optional[FeedOptions] = None) -> QueryIterator:
        return self._read_feed(ResourceKind.OFFER, None, options)

    def query_offers(self, query: Query, options: Optional[FeedOptions] = None) -> QueryIterator:
        return self._query_feed(ResourceKind.OFFER, None, query, options)

    # ========== Database account ==========

    async def get_database_account(self) -> Tuple[DatabaseAccount, Headers]:
        """Read the account properties, including media storage usage."""
        record, headers = await self._executor.execute("GET", parse_link(""))
        return DatabaseAccount.from_response(record, headers), headers

    # ========== Generic operations ==========

    def _item_link(self, target: LinkLike, kind: ResourceKind) -> ResourceLink:
        link = to_link(target, self.addressing_mode)
        if link.kind != kind or link.is_feed:
            raise ValidationError(f"'{link.path}' is not a {kind.value} link")
        return link

    def _feed_link(self, parent: Optional[LinkLike], kind: ResourceKind) -> ResourceLink:
        if parent is None:
            if kind.parent_kind is not None:
                raise ValidationError(f"A {kind.value} feed needs a {kind.parent_kind.value} link")
            return parse_link(kind.segment)
        return self._item_link(parent, kind.parent_kind).child_feed(kind)

    def _media_link(self, media_link: str) -> ResourceLink:
        link = parse_link(media_link)
        if not link.is_media:
            raise ValidationError(f"'{media_link}' is not a media link")
        return link

    @staticmethod
    def _media_headers(media_options: MediaOptions) -> Headers:
        headers = {HttpHeaders.CONTENT_TYPE: media_options.content_type}
        if media_options.slug is not None:
            headers[HttpHeaders.SLUG] = validate_id(media_options.slug)
        return headers

    @classmethod
    def _with_document_id(cls, body: Record, options: Optional[RequestOptions]) -> Record:
        cls._check_body(ResourceKind.DOCUMENT, body)
        if "id" in body or (options and options.disable_automatic_id_generation):
            return body
        return {**body, "id": str(uuid.uuid4())}

    @staticmethod
    def _check_body(kind: ResourceKind, body: Record) -> Record:
        if not isinstance(body, Mapping):
            raise ValidationError(f"{kind.value} body must be a mapping, got {type(body).__name__}")
        if "id" in body:
            validate_id(body["id"])
        if kind in _SCRIPT_KINDS and not isinstance(body.get("body"), str):
            raise ValidationError(f"{kind.value} body must carry its script as source text")
        return dict(body)

    async def _create(
        self,
        kind: ResourceKind,
        parent: Optional[LinkLike],
        body: Record,
        options: Optional[RequestOptions],
        *,
        upsert: bool = False,
    ) -> Tuple[Record, Headers]:
        options = options or RequestOptions()
        body = self._check_body(kind, body)
        link = self._feed_link(parent, kind)

        headers = options.to_headers()
        if upsert:
            headers[HttpHeaders.IS_UPSERT] = "true"
        # An upsert carrying its id is applied at most once per id
        idempotent = options.idempotent_replay or (upsert and "id" in body)
        return await self._executor.execute("POST", link, body=body, headers=headers, idempotent=idempotent)

    async def _read(self, kind: ResourceKind, target: LinkLike, options: Optional[RequestOptions]) -> Tuple[Record, Headers]:
        link = self._item_link(target, kind)
        headers = options.to_headers() if options else {}
        return await self._executor.execute("GET", link, headers=headers)

    async def _replace(
        self,
        kind: ResourceKind,
        target: LinkLike,
        body: Record,
        options: Optional[RequestOptions],
    ) -> Tuple[Record, Headers]:
        body = self._check_body(kind, body)
        link = self._item_link(target, kind)
        headers = options.to_headers() if options else {}
        return await self._executor.execute("PUT", link, body=body, headers=headers)

    async def _delete(self, kind: ResourceKind, target: LinkLike, options: Optional[RequestOptions]) -> Tuple[Record, Headers]:
        link = self._item_link(target, kind)
        headers = options.to_headers() if options else {}
        return await self._executor.execute("DELETE", link, headers=headers)

    def _read_feed(self, kind: ResourceKind, parent: Optional[LinkLike], options: Optional[FeedOptions]) -> QueryIterator:
        return self._iterator(kind, self._feed_link(parent, kind), None, options)

    def _query_feed(
        self,
        kind: ResourceKind,
        parent: Optional[LinkLike],
        query: Query,
        options: Optional[FeedOptions],
    ) -> QueryIterator:
        return self._iterator(kind, self._feed_link(parent, kind), QuerySpec.coerce(query), options)

    def _iterator(
        self,
        kind: ResourceKind,
        link: ResourceLink,
        query: Optional[QuerySpec],
        options: Optional[FeedOptions],
    ) -> QueryIterator:
        options = options or FeedOptions()
        executor = self._executor

        async def fetch_page(continuation: Optional[str]) -> FeedPage:
            headers = options.to_headers()
            if continuation:
                headers[HttpHeaders.CONTINUATION] = continuation
            if query is None:
                result, response_headers = await executor.execute("GET", link, headers=headers)
            else:
                headers[HttpHeaders.IS_QUERY] = "true"
                headers[HttpHeaders.CONTENT_TYPE] = MediaTypes.QUERY_JSON
                result, response_headers = await executor.execute(
                    "POST", link, body=query.to_body(), headers=headers
                )
            items: List[Record] = (result or {}).get(kind.feed_key, [])
            return FeedPage(
                items=items,
                continuation=response_headers.get(HttpHeaders.CONTINUATION),
                headers=response_headers,
            )

        description = f"{'query' if query else 'feed'} of /{link.path}"
        return QueryIterator(fetch_page, options, description=description)

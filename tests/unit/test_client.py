"""
Unit tests for DocumentClient request construction and local validation.

Author: docdb Team
Date: 2025-12-14
"""

import json

import pytest

from docdb.client import DocumentClient
from docdb.constants import HttpHeaders
from docdb.core.config_manager import ClientConfig, ConnectionPolicy
from docdb.exceptions import BadRequest, ValidationError
from docdb.links import AddressingMode, ResourceIdentity, ResourceKind, encode_rid
from docdb.models import FeedOptions, MediaOptions, RequestOptions

from conftest import RecordingTransport, json_response

MASTER_KEY = "C2y6yDjf5/R+ob0N8A7Cgv30VRDJIWEHLM+4QDU5DE2nQ9nDuVTqobD4b8mGGyPMbIZnqyMsEcaGQy67XIw/Jw=="
COLL = "dbs/db1/colls/c1"
DOC = "dbs/db1/colls/c1/docs/d1"


def make_client(responses=None, **kwargs):
    transport = RecordingTransport(responses)
    kwargs.setdefault("master_key", MASTER_KEY)
    client = DocumentClient("http://localhost:8081/", transport=transport, **kwargs)
    return client, transport


def sent_body(transport, index=0):
    return json.loads(transport.requests[index]["body"])


class TestConstruction:
    """Tests for client construction."""

    def test_endpoint_and_policy(self):
        client, _ = make_client()
        assert client.endpoint == "http://localhost:8081/"
        assert client.addressing_mode == AddressingMode.NAME_BASED

    def test_from_config(self):
        config = ClientConfig(
            endpoint="http://example:1234",
            master_key=MASTER_KEY,
            connection_policy=ConnectionPolicy(addressing_mode=AddressingMode.SELF_LINK_BASED),
        )
        client = DocumentClient.from_config(config, transport=RecordingTransport())
        assert client.endpoint == "http://example:1234/"
        assert client.addressing_mode == AddressingMode.SELF_LINK_BASED
        assert client.auth.has_credentials

    def test_with_addressing_mode_shares_transport(self):
        client, transport = make_client()
        view = client.with_addressing_mode("self_link_based")
        assert view.addressing_mode == AddressingMode.SELF_LINK_BASED
        assert client.addressing_mode == AddressingMode.NAME_BASED
        assert view._transport is transport

    def test_resolve_uses_client_mode(self):
        client, _ = make_client()
        db = ResourceIdentity(ResourceKind.DATABASE, id="db1", self_link="dbs/AAAAAA==/")
        assert client.resolve(db) == "dbs/db1"
        assert client.resolve(db, AddressingMode.SELF_LINK_BASED) == "dbs/AAAAAA=="


class TestLocalValidation:
    """Invalid input fails locally without any round trip."""

    @pytest.mark.asyncio
    @pytest.mark.parametrize("bad_id", ["doc ", "a/b", "a?b", "a#b", "a\\b"])
    async def test_invalid_document_id(self, bad_id):
        client, transport = make_client()
        with pytest.raises(ValidationError):
            await client.create_document(COLL, {"id": bad_id})
        assert transport.calls == 0

    @pytest.mark.asyncio
    async def test_invalid_id_in_link(self):
        client, transport = make_client()
        with pytest.raises(ValidationError, match="Id ends with a space."):
            await client.read_document("dbs/db1/colls/c1/docs/d1 ")
        assert transport.calls == 0

    @pytest.mark.asyncio
    @pytest.mark.parametrize("method", ["create_trigger", "create_udf", "create_stored_procedure"])
    async def test_script_body_must_be_text(self, method):
        client, transport = make_client()
        body = {"id": "s1", "body": {"not": "a string"}, "triggerType": "Pre", "triggerOperation": "All"}
        with pytest.raises(ValidationError, match="source text"):
            await getattr(client, method)(COLL, body)
        assert transport.calls == 0

    @pytest.mark.asyncio
    async def test_body_must_be_a_mapping(self):
        client, transport = make_client()
        with pytest.raises(ValidationError, match="mapping"):
            await client.create_database(["db1"])
        assert transport.calls == 0

    @pytest.mark.asyncio
    @pytest.mark.parametrize("operation", ["create_document", "upsert_document"])
    @pytest.mark.parametrize("body", [None, "abc", ["x"]])
    async def test_document_body_must_be_a_mapping(self, operation, body):
        client, transport = make_client()
        with pytest.raises(ValidationError, match="Document body must be a mapping"):
            await getattr(client, operation)(COLL, body)
        assert transport.calls == 0

    @pytest.mark.asyncio
    async def test_wrong_link_kind(self):
        client, transport = make_client()
        with pytest.raises(ValidationError, match="is not a Document link"):
            await client.read_document(COLL)
        with pytest.raises(ValidationError):
            client.read_documents(DOC)
        assert transport.calls == 0

    @pytest.mark.asyncio
    async def test_invalid_slug(self):
        client, transport = make_client()
        with pytest.raises(ValidationError):
            await client.create_attachment_and_upload_media(DOC, b"data", MediaOptions(slug="bad/slug"))
        assert transport.calls == 0

    @pytest.mark.asyncio
    async def test_read_media_needs_media_link(self):
        client, transport = make_client()
        with pytest.raises(ValidationError, match="media link"):
            await client.read_media(DOC)
        assert transport.calls == 0

    @pytest.mark.asyncio
    async def test_self_link_mode_needs_self_link(self):
        client, transport = make_client()
        view = client.with_addressing_mode(AddressingMode.SELF_LINK_BASED)
        db = ResourceIdentity(ResourceKind.DATABASE, id="db1")
        with pytest.raises(ValidationError, match="no self link"):
            await view.read_database(db)
        assert transport.calls == 0


class TestRequests:
    """Tests for the requests issued per operation."""

    @pytest.mark.asyncio
    async def test_create_document_assigns_id(self):
        client, transport = make_client([json_response(201, {"id": "x"})])

        await client.create_document(COLL, {"name": "n"})

        request = transport.requests[0]
        assert request["method"] == "POST"
        assert request["path"] == f"{COLL}/docs"
        body = sent_body(transport)
        assert body["name"] == "n"
        assert len(body["id"]) == 36

    @pytest.mark.asyncio
    async def test_automatic_id_generation_disabled(self):
        client, transport = make_client([json_response(400, {"message": "id missing"})])

        with pytest.raises(BadRequest):
            await client.create_document(COLL, {"name": "n"}, RequestOptions(disable_automatic_id_generation=True))

        assert "id" not in sent_body(transport)

    @pytest.mark.asyncio
    async def test_caller_body_is_not_mutated(self):
        client, _ = make_client([json_response(201, {})])
        body = {"name": "n"}
        await client.create_document(COLL, body)
        assert body == {"name": "n"}

    @pytest.mark.asyncio
    async def test_upsert_header(self):
        client, transport = make_client([json_response(200, {})])

        await client.upsert_document(COLL, {"id": "d1"})

        assert transport.requests[0]["headers"][HttpHeaders.IS_UPSERT] == "true"

    @pytest.mark.asyncio
    async def test_request_option_headers(self):
        client, transport = make_client([json_response(201, {})])
        options = RequestOptions(pre_trigger_include=["t1", "t2"], if_match_etag='"e"', offer_type="S2")

        await client.create_collection("dbs/db1", {"id": "c1"}, options)

        headers = transport.requests[0]["headers"]
        assert headers[HttpHeaders.PRE_TRIGGER_INCLUDE] == "t1,t2"
        assert headers[HttpHeaders.IF_MATCH] == '"e"'
        assert headers[HttpHeaders.OFFER_TYPE] == "S2"

    @pytest.mark.asyncio
    async def test_identity_resolved_with_client_mode(self):
        db_rid = encode_rid(b"\x01\x02\x03\x04")
        db = ResourceIdentity(ResourceKind.DATABASE, id="db1", self_link=f"dbs/{db_rid}/", resource_id=db_rid)
        client, transport = make_client([json_response(200, {}), json_response(200, {})])

        await client.read_database(db)
        await client.with_addressing_mode(AddressingMode.SELF_LINK_BASED).read_database(db)

        assert [r["path"] for r in transport.requests] == ["dbs/db1", f"dbs/{db_rid}"]

    @pytest.mark.asyncio
    async def test_query_request(self):
        client, transport = make_client([json_response(200, {"Documents": [{"id": "d1"}]})])
        query = {"query": "SELECT * FROM root r WHERE r.id = @id", "parameters": [{"name": "@id", "value": "d1"}]}

        items = await client.query_documents(COLL, query, FeedOptions(max_item_count=5)).to_list()

        assert items == [{"id": "d1"}]
        request = transport.requests[0]
        assert request["method"] == "POST"
        assert request["headers"][HttpHeaders.IS_QUERY] == "true"
        assert request["headers"][HttpHeaders.MAX_ITEM_COUNT] == "5"
        assert sent_body(transport) == query

    @pytest.mark.asyncio
    async def test_feed_follows_continuation(self):
        client, transport = make_client([
            json_response(200, {"Databases": [{"id": "a"}]}, {HttpHeaders.CONTINUATION: "tok"}),
            json_response(200, {"Databases": [{"id": "b"}]}),
        ])

        items = await client.read_databases().to_list()

        assert [i["id"] for i in items] == ["a", "b"]
        assert HttpHeaders.CONTINUATION not in transport.requests[0]["headers"]
        assert transport.requests[1]["headers"][HttpHeaders.CONTINUATION] == "tok"

    @pytest.mark.asyncio
    async def test_feed_is_lazy(self):
        client, transport = make_client()
        iterator = client.read_collections("dbs/db1")
        assert iterator.has_more_results()
        assert transport.calls == 0

    @pytest.mark.asyncio
    async def test_execute_stored_procedure_wraps_single_param(self):
        client, transport = make_client([json_response(200, ["x"]), json_response(200, [1, 2])])

        result, _ = await client.execute_stored_procedure(f"{COLL}/sprocs/s1", "x")
        assert result == ["x"]
        assert sent_body(transport, 0) == ["x"]

        await client.execute_stored_procedure(f"{COLL}/sprocs/s1", [1, 2])
        assert sent_body(transport, 1) == [1, 2]

    @pytest.mark.asyncio
    async def test_upload_media_headers(self):
        client, transport = make_client([json_response(201, {"id": "a1"})])

        await client.create_attachment_and_upload_media(
            DOC, b"hello", MediaOptions(slug="a1", content_type="text/plain")
        )

        request = transport.requests[0]
        assert request["path"] == f"{DOC}/attachments"
        assert request["body"] == b"hello"
        assert request["headers"][HttpHeaders.SLUG] == "a1"
        assert request["headers"][HttpHeaders.CONTENT_TYPE] == "text/plain"

    @pytest.mark.asyncio
    async def test_database_account(self):
        client, transport = make_client([
            json_response(
                200,
                {"id": "acct", "MaxMediaStorageUsageInMB": 1, "CurrentMediaStorageUsageInMB": 0},
                {HttpHeaders.MAX_MEDIA_STORAGE_USAGE_MB: "10240", HttpHeaders.CURRENT_MEDIA_STORAGE_USAGE_MB: "2"},
            )
        ])

        account, _ = await client.get_database_account()

        assert transport.requests[0]["path"] == ""
        assert account.max_media_storage_usage_mb == 10240
        assert account.current_media_storage_usage_mb == 2
        assert account.databases_link == "/dbs/"

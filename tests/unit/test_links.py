"""
Unit tests for resource addressing.

Author: docdb Team
Date: 2025-12-14
"""

import gc

import pytest

from docdb.exceptions import ValidationError
from docdb.links import (
    AddressingMode,
    ResourceIdentity,
    ResourceKind,
    decode_rid,
    encode_rid,
    is_name_based,
    parse_link,
    resolve,
    to_link,
    validate_id,
)

DB_RID = encode_rid(b"\x01\x02\x03\x04")
COLL_RID = encode_rid(b"\x01\x02\x03\x04\x05\x06\x07\x08")
DOC_RID = encode_rid(b"\x01\x02\x03\x04\x05\x06\x07\x08" + bytes(range(8)))


def _document_chain():
    db = ResourceIdentity(ResourceKind.DATABASE, id="db1", self_link=f"/dbs/{DB_RID}/", resource_id=DB_RID)
    coll = ResourceIdentity(
        ResourceKind.COLLECTION, id="coll1", self_link=f"dbs/{DB_RID}/colls/{COLL_RID}/",
        resource_id=COLL_RID, parent=db,
    )
    doc = ResourceIdentity(
        ResourceKind.DOCUMENT, id="doc1", self_link=f"dbs/{DB_RID}/colls/{COLL_RID}/docs/{DOC_RID}/",
        resource_id=DOC_RID, parent=coll,
    )
    return db, coll, doc


class TestValidateId:
    """Tests for local id validation."""

    @pytest.mark.parametrize("resource_id", ["doc1", "a b", "näme", "x.y-z_1", "with space inside"])
    def test_valid_ids(self, resource_id):
        """Valid ids are returned unchanged."""
        assert validate_id(resource_id) == resource_id

    @pytest.mark.parametrize("resource_id", ["doc ", "doc\t", "doc\n"])
    def test_trailing_whitespace(self, resource_id):
        with pytest.raises(ValidationError, match="Id ends with a space."):
            validate_id(resource_id)

    @pytest.mark.parametrize("resource_id", ["a/b", "a\\b", "a?b", "a#b"])
    def test_illegal_chars(self, resource_id):
        with pytest.raises(ValidationError, match="Id contains illegal chars."):
            validate_id(resource_id)

    @pytest.mark.parametrize("resource_id", ["", None, 42])
    def test_empty_or_not_a_string(self, resource_id):
        with pytest.raises(ValidationError):
            validate_id(resource_id)


class TestResolve:
    """Tests for both addressing strategies."""

    def test_name_based_path(self):
        """Name-based paths concatenate segments and ids from the database down."""
        db, coll, doc = _document_chain()
        assert resolve(doc, AddressingMode.NAME_BASED) == "dbs/db1/colls/coll1/docs/doc1"
        assert resolve(coll, AddressingMode.NAME_BASED) == "dbs/db1/colls/coll1"
        assert resolve(db, AddressingMode.NAME_BASED) == "dbs/db1"

    def test_self_link_path(self):
        """Self-link paths are the server's _self without surrounding slashes."""
        db, _, doc = _document_chain()
        assert resolve(doc, AddressingMode.SELF_LINK_BASED) == f"dbs/{DB_RID}/colls/{COLL_RID}/docs/{DOC_RID}"
        assert resolve(db, "self_link_based") == f"dbs/{DB_RID}"

    def test_resolution_is_repeatable(self):
        _, _, doc = _document_chain()
        for mode in AddressingMode:
            assert resolve(doc, mode) == resolve(doc, mode)

    def test_missing_ancestor_id(self):
        db = ResourceIdentity(ResourceKind.DATABASE, self_link=f"dbs/{DB_RID}/")
        coll = ResourceIdentity(ResourceKind.COLLECTION, id="coll1", parent=db)
        with pytest.raises(ValidationError, match="no id"):
            resolve(coll, AddressingMode.NAME_BASED)

    def test_missing_parent(self):
        coll = ResourceIdentity(ResourceKind.COLLECTION, id="coll1")
        with pytest.raises(ValidationError, match="is missing"):
            resolve(coll, AddressingMode.NAME_BASED)

    def test_collected_parent(self):
        """A weakly held ancestor that was garbage collected is a local failure."""
        db = ResourceIdentity(ResourceKind.DATABASE, id="db1")
        coll = ResourceIdentity(ResourceKind.COLLECTION, id="coll1", parent=db)
        del db
        gc.collect()

        assert coll.get_parent() is None
        with pytest.raises(ValidationError, match="no longer available"):
            resolve(coll, AddressingMode.NAME_BASED)

    def test_wrong_parent_kind(self):
        db = ResourceIdentity(ResourceKind.DATABASE, id="db1")
        doc = ResourceIdentity(ResourceKind.DOCUMENT, id="doc1", parent=db)
        with pytest.raises(ValidationError, match="cannot be nested"):
            resolve(doc, AddressingMode.NAME_BASED)

    def test_missing_self_link(self):
        doc = ResourceIdentity(ResourceKind.DOCUMENT, id="doc1")
        with pytest.raises(ValidationError, match="no self link"):
            resolve(doc, AddressingMode.SELF_LINK_BASED)

    @pytest.mark.parametrize("mode", list(AddressingMode))
    def test_invalid_id_fails_in_both_modes(self, mode):
        db, coll, _ = _document_chain()
        doc = ResourceIdentity(
            ResourceKind.DOCUMENT, id="bad/id", self_link=f"dbs/{DB_RID}/colls/{COLL_RID}/docs/{DOC_RID}/",
            parent=coll,
        )
        with pytest.raises(ValidationError, match="illegal chars"):
            resolve(doc, mode)

    def test_from_record(self):
        record = {"id": "db1", "_self": f"dbs/{DB_RID}/", "_rid": DB_RID}
        identity = ResourceIdentity.from_record(ResourceKind.DATABASE, record)
        assert identity.id == "db1"
        assert identity.self_link == f"dbs/{DB_RID}/"
        assert identity.resource_id == DB_RID

    def test_known_resource_ids(self):
        _, _, doc = _document_chain()
        assert doc.known_resource_ids() == (DOC_RID, COLL_RID, DB_RID)


class TestParseLink:
    """Tests for link classification."""

    def test_account_root(self):
        link = parse_link("")
        assert link.is_account
        assert link.kind is None
        assert link.resource_type == ""
        assert link.resource_link == ""

    def test_databases_feed(self):
        link = parse_link("/dbs/")
        assert link.is_feed
        assert link.kind == ResourceKind.DATABASE
        assert link.resource_type == "dbs"
        assert link.resource_link == ""

    def test_name_based_item(self):
        link = parse_link("dbs/db1/colls/coll1/docs/doc1/")
        assert not link.is_feed
        assert link.is_name_based
        assert link.kind == ResourceKind.DOCUMENT
        assert link.resource_type == "docs"
        assert link.resource_link == "dbs/db1/colls/coll1/docs/doc1"
        assert link.resource_ids == ()

    def test_name_based_feed(self):
        link = parse_link("dbs/db1/colls/coll1/docs")
        assert link.is_feed
        assert link.kind == ResourceKind.DOCUMENT
        assert link.resource_link == "dbs/db1/colls/coll1"

    def test_self_link_item(self):
        link = parse_link(f"/dbs/{DB_RID}/colls/{COLL_RID}/")
        assert not link.is_name_based
        assert link.kind == ResourceKind.COLLECTION
        assert link.resource_type == "colls"
        assert link.resource_link == COLL_RID
        assert link.resource_ids == (COLL_RID, DB_RID)

    def test_self_link_feed(self):
        link = parse_link(f"dbs/{DB_RID}/colls/{COLL_RID}/docs")
        assert link.is_feed
        assert link.resource_link == COLL_RID

    def test_offer_links(self):
        feed = parse_link("offers")
        assert feed.is_feed and feed.kind == ResourceKind.OFFER

        item = parse_link("offers/AbCd/")
        assert item.kind == ResourceKind.OFFER
        assert item.resource_link == "abcd"
        assert item.resource_ids == ("AbCd",)

    def test_media_link(self):
        link = parse_link("/media/abc123")
        assert link.is_media
        assert link.resource_type == "media"
        assert link.resource_link == "abc123"

    @pytest.mark.parametrize("path", [
        "dbs/db1/docs/doc1",
        "colls/c1",
        "dbs//colls",
        "dbs/db1/unknown/x",
        "offers/a/b",
        "media/a/b",
    ])
    def test_invalid_links(self, path):
        with pytest.raises(ValidationError):
            parse_link(path)

    def test_invalid_id_in_name_based_path(self):
        with pytest.raises(ValidationError, match="Id ends with a space."):
            parse_link("dbs/db1/colls/coll1 ")

    def test_child_feed_keeps_resource_ids(self):
        _, coll, _ = _document_chain()
        link = to_link(coll, AddressingMode.NAME_BASED)
        feed = link.child_feed(ResourceKind.DOCUMENT)
        assert feed.path == "dbs/db1/colls/coll1/docs"
        assert feed.resource_ids == (COLL_RID, DB_RID)

    def test_child_feed_of_feed(self):
        with pytest.raises(ValidationError):
            parse_link("dbs").child_feed(ResourceKind.COLLECTION)


class TestResourceIds:
    """Tests for resource id helpers."""

    def test_database_rid_is_not_name_based(self):
        assert not is_name_based(f"dbs/{DB_RID}")
        assert is_name_based("dbs/db1")
        assert is_name_based("dbs/database")

    def test_encode_decode(self):
        raw = bytes(range(250, 256)) + b"\xff\xfe"
        rid = encode_rid(raw)
        assert "/" not in rid
        assert decode_rid(rid) == raw

    def test_decode_invalid(self):
        assert decode_rid("not base64!") is None

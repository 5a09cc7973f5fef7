"""
Unit tests for request signing and credential resolution.

Author: docdb Team
Date: 2025-12-14
"""

import base64
import hashlib
import hmac
from datetime import datetime, timedelta, timezone
from urllib.parse import unquote

import pytest

from docdb.auth import (
    AuthorizationContext,
    MasterKeyCredential,
    ResourceTokenCredential,
    build_master_key_authorization,
    build_string_to_sign,
    compute_signature,
    format_request_date,
    parse_authorization_header,
    verify_master_key_signature,
)
from docdb.constants import HttpHeaders
from docdb.exceptions import Unauthorized, ValidationError
from docdb.links import AddressingMode, ResourceIdentity, ResourceKind, encode_rid, parse_link, to_link

MASTER_KEY = base64.b64encode(b"0123456789abcdef0123456789abcdef").decode("ascii")

DB_RAW = b"\x0a\x0b\x0c\x0d"
COLL_RAW = DB_RAW + b"\x01\x02\x03\x04"
DOC_RAW = COLL_RAW + bytes(range(8))
ATTACHMENT_RAW = DOC_RAW + b"\x09\x09\x09\x09"
DB_RID, COLL_RID, DOC_RID, ATTACHMENT_RID = (
    encode_rid(DB_RAW), encode_rid(COLL_RAW), encode_rid(DOC_RAW), encode_rid(ATTACHMENT_RAW)
)


class TestMasterKeySigning:
    """Tests for the HMAC-SHA256 master key scheme."""

    def test_string_to_sign(self):
        text = build_string_to_sign("GET", "DOCS", "dbs/Db1/colls/c1/docs/d1", "Tue, 01 Dec 2025 10:00:00 GMT")
        assert text == "get\ndocs\ndbs/Db1/colls/c1/docs/d1\ntue, 01 dec 2025 10:00:00 gmt\n\n"

    def test_compute_signature(self):
        expected = base64.b64encode(
            hmac.new(base64.b64decode(MASTER_KEY), b"payload", hashlib.sha256).digest()
        ).decode("utf-8")
        assert compute_signature("payload", MASTER_KEY) == expected

    def test_authorization_header_is_url_encoded(self):
        header = build_master_key_authorization("GET", "dbs", "dbs/db1", format_request_date(), MASTER_KEY)
        assert "&" not in header
        assert unquote(header).startswith("type=master&ver=1.0&sig=")

    def test_parse_authorization_header(self):
        header = build_master_key_authorization("GET", "dbs", "", format_request_date(), MASTER_KEY)
        token_type, version, signature = parse_authorization_header(header)
        assert token_type == "master"
        assert version == "1.0"
        assert signature

    @pytest.mark.parametrize("header", ["garbage", "type=master&ver=1.0"])
    def test_parse_malformed_header(self, header):
        with pytest.raises(ValueError):
            parse_authorization_header(header)

    def test_verify_round_trip(self):
        date = format_request_date()
        headers = {
            HttpHeaders.X_DATE: date,
            HttpHeaders.AUTHORIZATION: build_master_key_authorization("POST", "docs", "dbs/db1/colls/c1", date, MASTER_KEY),
        }
        assert verify_master_key_signature("POST", "docs", "dbs/db1/colls/c1", headers, MASTER_KEY)
        assert not verify_master_key_signature("GET", "docs", "dbs/db1/colls/c1", headers, MASTER_KEY)
        assert not verify_master_key_signature("POST", "docs", "dbs/db1/colls/c2", headers, MASTER_KEY)

    def test_verify_rejects_stale_date(self):
        date = format_request_date(datetime.now(timezone.utc) - timedelta(hours=1))
        headers = {
            HttpHeaders.X_DATE: date,
            HttpHeaders.AUTHORIZATION: build_master_key_authorization("GET", "dbs", "", date, MASTER_KEY),
        }
        assert not verify_master_key_signature("GET", "dbs", "", headers, MASTER_KEY)

    def test_verify_rejects_missing_headers(self):
        assert not verify_master_key_signature("GET", "dbs", "", {}, MASTER_KEY)


class TestAuthorizationContext:
    """Tests for per-request credential resolution."""

    def test_master_key_covers_everything(self):
        context = AuthorizationContext(master_key=MASTER_KEY)
        for path in ("", "dbs", "dbs/db1/colls/c1/docs/d1", "offers", f"media/{ATTACHMENT_RID}"):
            assert isinstance(context.credential_for(parse_link(path)), MasterKeyCredential)

    def test_master_key_takes_precedence(self):
        context = AuthorizationContext(master_key=MASTER_KEY, resource_tokens={COLL_RID: "type=resource&ver=1.0&sig=x"})
        assert isinstance(context.credential_for(parse_link(f"dbs/{DB_RID}/colls/{COLL_RID}")), MasterKeyCredential)

    def test_master_key_is_not_printed(self):
        assert MASTER_KEY not in repr(MasterKeyCredential(MASTER_KEY))
        assert "secret" not in repr(ResourceTokenCredential("secret", COLL_RID))

    def test_resource_token_covers_descendants(self):
        """A collection token is found by walking the document's resource id chain."""
        context = AuthorizationContext(resource_tokens={COLL_RID: "coll-token"})
        credential = context.credential_for(parse_link(f"dbs/{DB_RID}/colls/{COLL_RID}/docs/{DOC_RID}"))
        assert credential.token == "coll-token"
        assert credential.resource_id == COLL_RID

    def test_resource_token_exact_match_wins(self):
        context = AuthorizationContext(resource_tokens={COLL_RID: "coll-token", DOC_RID: "doc-token"})
        credential = context.credential_for(parse_link(f"dbs/{DB_RID}/colls/{COLL_RID}/docs/{DOC_RID}"))
        assert credential.token == "doc-token"

    def test_resource_token_for_feed(self):
        context = AuthorizationContext(resource_tokens={COLL_RID: "coll-token"})
        credential = context.credential_for(parse_link(f"dbs/{DB_RID}/colls/{COLL_RID}/docs"))
        assert credential.token == "coll-token"

    def test_resource_token_for_name_based_identity(self):
        """Identities carry their resource ids into name-based links."""
        db = ResourceIdentity(ResourceKind.DATABASE, id="db1", resource_id=DB_RID)
        coll = ResourceIdentity(ResourceKind.COLLECTION, id="c1", resource_id=COLL_RID, parent=db)
        context = AuthorizationContext(resource_tokens={COLL_RID: "coll-token"})

        link = to_link(coll, AddressingMode.NAME_BASED)
        assert link.path == "dbs/db1/colls/c1"
        assert context.credential_for(link).token == "coll-token"

    @pytest.mark.parametrize("path", ["dbs/db1/colls/c1", "dbs/db1/colls/c1/docs", "dbs/db1"])
    def test_single_token_serves_name_based_strings(self, path):
        """The server enforces the scope of the only token held."""
        context = AuthorizationContext(resource_tokens={COLL_RID: "coll-token", DOC_RID: "coll-token"})
        credential = context.credential_for(parse_link(path))
        assert credential.token == "coll-token"

    def test_single_self_link_grant_serves_name_based_strings(self):
        feed = [{"id": "p", "_token": "tok", "resource": f"dbs/{DB_RID}/colls/{COLL_RID}/"}]
        context = AuthorizationContext(permission_feed=feed)
        assert context.credential_for(parse_link("dbs/db1/colls/c1/docs")).token == "tok"

    def test_several_tokens_need_resource_ids(self):
        context = AuthorizationContext(resource_tokens={COLL_RID: "coll-token", DOC_RID: "doc-token"})
        with pytest.raises(Unauthorized, match="self link"):
            context.credential_for(parse_link("dbs/db1/colls/c1/docs/d1"))

    def test_resource_token_for_media(self):
        """Media ids embed the resource ids of the attachment's ancestors."""
        context = AuthorizationContext(resource_tokens={DOC_RID: "doc-token"})
        assert context.credential_for(parse_link(f"media/{ATTACHMENT_RID}")).token == "doc-token"

    def test_resource_token_miss_is_unauthorized(self):
        context = AuthorizationContext(resource_tokens={COLL_RID: "coll-token"})
        with pytest.raises(Unauthorized) as exc_info:
            context.credential_for(parse_link(f"dbs/{DB_RID}"))
        assert exc_info.value.code == 401

    def test_account_accepts_any_token(self):
        context = AuthorizationContext(resource_tokens={COLL_RID: "coll-token"})
        assert context.credential_for(parse_link("")).token == "coll-token"

    def test_permission_feed_narrowest_grant(self):
        feed = [
            {"id": "p-db", "_token": "db-token", "resource": f"dbs/{DB_RID}/", "permissionMode": "All"},
            {"id": "p-coll", "_token": "coll-token", "resource": f"dbs/{DB_RID}/colls/{COLL_RID}/", "permissionMode": "Read"},
        ]
        context = AuthorizationContext(permission_feed=feed)

        doc_link = parse_link(f"dbs/{DB_RID}/colls/{COLL_RID}/docs/{DOC_RID}")
        assert context.credential_for(doc_link).token == "coll-token"
        other_coll = encode_rid(DB_RAW + b"\x07\x07\x07\x07")
        assert context.credential_for(parse_link(f"dbs/{DB_RID}/colls/{other_coll}")).token == "db-token"

    def test_permission_feed_name_based_prefix(self):
        feed = [{"id": "p", "_token": "tok", "resource": "dbs/db1/colls/c1"}]
        context = AuthorizationContext(permission_feed=feed)
        assert context.credential_for(parse_link("dbs/db1/colls/c1/docs/d1")).token == "tok"
        with pytest.raises(Unauthorized):
            context.credential_for(parse_link("dbs/db1/colls/c10"))

    def test_permission_without_token(self):
        with pytest.raises(ValidationError):
            AuthorizationContext(permission_feed=[{"id": "p", "resource": "dbs/db1"}])

    def test_no_credentials(self):
        context = AuthorizationContext()
        assert not context.has_credentials
        with pytest.raises(Unauthorized):
            context.credential_for(parse_link("dbs"))

    def test_sign_sets_date_and_authorization(self):
        context = AuthorizationContext(master_key=MASTER_KEY)
        link = parse_link("dbs/db1")
        headers = context.sign("GET", link, {})

        assert verify_master_key_signature("GET", link.resource_type, link.resource_link, headers, MASTER_KEY)

    def test_sign_resource_token(self):
        context = AuthorizationContext(resource_tokens={COLL_RID: "type=resource&ver=1.0&sig=abc"})
        headers = context.sign("GET", parse_link(f"dbs/{DB_RID}/colls/{COLL_RID}"), {})
        assert unquote(headers[HttpHeaders.AUTHORIZATION]) == "type=resource&ver=1.0&sig=abc"
        assert HttpHeaders.X_DATE in headers

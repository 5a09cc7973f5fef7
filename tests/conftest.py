"""
Shared fixtures.

Integration tests drive ``DocumentClient`` through ``HttpxTransport`` on
``httpx.ASGITransport`` into a fresh emulator application per test.
"""

import json
from dataclasses import dataclass
from typing import Any, Dict, List, Mapping, Optional

import httpx
import pytest

from docdb.client import DocumentClient
from docdb.core.config_manager import ConnectionPolicy, RetryOptions
from docdb.emulator import EMULATOR_MASTER_KEY, DocumentDBBackend, FaultInjector, create_app
from docdb.links import AddressingMode, ResourceIdentity, ResourceKind
from docdb.transport import HttpxTransport, Transport, TransportResponse

ENDPOINT = "http://testserver/"


class RecordingTransport(Transport):
    """Scripted transport that records every send.

    Each scripted entry is a ``TransportResponse``, an exception to raise, or
    a coroutine function called with the request.
    """

    def __init__(self, responses: Optional[List[Any]] = None):
        self.responses = list(responses or [])
        self.requests: List[Dict[str, Any]] = []

    @property
    def calls(self) -> int:
        return len(self.requests)

    async def send(self, method, path, headers, body=None, *, stream=False):
        self.requests.append({"method": method, "path": path, "headers": dict(headers), "body": body})
        if not self.responses:
            raise AssertionError(f"Unexpected request: {method} /{path}")
        response = self.responses.pop(0)
        if isinstance(response, BaseException):
            raise response
        if callable(response):
            return await response(method, path, headers, body)
        return response


def json_response(status_code: int, body: Any = None, headers: Optional[Mapping[str, str]] = None) -> TransportResponse:
    data = b"" if body is None else json.dumps(body).encode("utf-8")
    return TransportResponse(status_code, dict(headers or {}), data)


def fast_policy(**kwargs: Any) -> ConnectionPolicy:
    """Connection policy whose backoff never waits."""
    kwargs.setdefault("retry_options", RetryOptions(initial_backoff=0.0, max_backoff=0.0))
    return ConnectionPolicy(**kwargs)


@dataclass
class Tree:
    """Identities of a database and collection created for a test."""

    db: ResourceIdentity
    coll: ResourceIdentity
    db_record: Dict[str, Any]
    coll_record: Dict[str, Any]


@pytest.fixture
def backend():
    return DocumentDBBackend()


@pytest.fixture
def faults():
    return FaultInjector()


@pytest.fixture
def app(backend, faults):
    return create_app(backend=backend, faults=faults)


@pytest.fixture
async def make_client(app):
    """Factory of clients bound to the emulator; master key by default."""
    clients: List[DocumentClient] = []

    def factory(**kwargs: Any) -> DocumentClient:
        if not {"master_key", "resource_tokens", "permission_feed"} & kwargs.keys():
            kwargs["master_key"] = EMULATOR_MASTER_KEY
        kwargs.setdefault("connection_policy", fast_policy())
        transport = HttpxTransport(ENDPOINT, transport=httpx.ASGITransport(app=app))
        client = DocumentClient(ENDPOINT, transport=transport, **kwargs)
        clients.append(client)
        return client

    yield factory

    for client in clients:
        await client.close()


@pytest.fixture(params=[AddressingMode.NAME_BASED, AddressingMode.SELF_LINK_BASED], ids=["name", "self"])
def mode(request):
    return request.param


@pytest.fixture
def client(make_client, mode):
    return make_client(connection_policy=fast_policy(addressing_mode=mode))


@pytest.fixture
async def tree(client):
    db_record, _ = await client.create_database({"id": "db1"})
    db = ResourceIdentity.from_record(ResourceKind.DATABASE, db_record)
    coll_record, _ = await client.create_collection(db, {"id": "coll1"})
    coll = ResourceIdentity.from_record(ResourceKind.COLLECTION, coll_record, parent=db)
    return Tree(db=db, coll=coll, db_record=db_record, coll_record=coll_record)

"""
Emulator HTTP application.

Routes every request path through one handler that classifies the path with
the same link parser the client uses, authorizes it, and dispatches it to
the in-memory backend.

Author: docdb Team
Date: 2025-12-13
"""

import json
import logging
import uuid
from typing import Any, Dict, Optional

from fastapi import FastAPI, Request, status
from fastapi.responses import JSONResponse, Response

from docdb import __version__
from docdb.constants import HttpHeaders, MediaTypes
from docdb.exceptions import ValidationError
from docdb.links import ResourceKind, ResourceLink, parse_link

from .backend import DocumentDBBackend, OperationResult
from .exceptions import BadRequestError, EmulatorError, MethodNotAllowedError
from .faults import FailureInjectionResult, FaultInjector

logger = logging.getLogger(__name__)

_JSON_TYPES = (MediaTypes.JSON, MediaTypes.QUERY_JSON)


def create_app(
    backend: Optional[DocumentDBBackend] = None,
    faults: Optional[FaultInjector] = None,
) -> FastAPI:
    """
    Create the emulator application.

    Args:
        backend: Backend to serve (a fresh one by default)
        faults: Fault injector consulted before every request

    Returns:
        Configured FastAPI application; ``app.state.backend`` and
        ``app.state.faults`` expose the collaborators to tests.
    """
    app = FastAPI(
        title="docdb emulator",
        description="In-memory document database emulator",
        version=__version__,
        docs_url=None,
        redoc_url=None,
        openapi_url=None,
    )
    app.state.backend = backend or DocumentDBBackend()
    app.state.faults = faults or FaultInjector()

    @app.get("/_emulator/health")
    async def health() -> Dict[str, Any]:
        """Health check endpoint."""
        return {"status": "healthy", "version": __version__}

    @app.api_route("/{path:path}", methods=["GET", "POST", "PUT", "DELETE"])
    async def handle(path: str, request: Request) -> Response:
        headers = {k.lower(): v for k, v in request.headers.items()}
        method = request.method.upper()

        fault = app.state.faults.check_failure(method, path)
        if fault.should_fail:
            return _fault_response(fault)

        link = parse_link(path)
        app.state.backend.authorize(method, link, headers)
        result = await _dispatch(app.state.backend, method, link, headers, request)
        if isinstance(result, Response):
            return result
        return _json_response(result)

    app.add_exception_handler(EmulatorError, _emulator_error_handler)
    app.add_exception_handler(ValidationError, _validation_error_handler)
    return app


async def _dispatch(
    backend: DocumentDBBackend,
    method: str,
    link: ResourceLink,
    headers: Dict[str, str],
    request: Request,
) -> Any:
    if link.is_account:
        if method != "GET":
            raise MethodNotAllowedError("The database account is read-only.")
        return await backend.database_account()

    if link.is_media:
        if method == "GET":
            entry = await backend.read_media(link.resource_link)
            return Response(content=entry.content, media_type=entry.content_type, headers=_common_headers())
        if method == "PUT":
            content_type = headers.get(HttpHeaders.CONTENT_TYPE, MediaTypes.OCTET_STREAM)
            return await backend.update_media(link.resource_link, await request.body(), content_type)
        raise MethodNotAllowedError(f"{method} is not supported on media.")

    if link.is_feed:
        if method == "GET":
            return await backend.read_feed(link, headers)
        if method != "POST":
            raise MethodNotAllowedError(f"{method} is not supported on a feed.")
        if headers.get(HttpHeaders.IS_QUERY) == "true":
            return await backend.query(link, await _json_body(request), headers)
        content_type = _content_type(headers)
        if link.kind == ResourceKind.ATTACHMENT and content_type not in _JSON_TYPES:
            return await backend.create_attachment_with_media(
                link,
                await request.body(),
                headers.get(HttpHeaders.CONTENT_TYPE, MediaTypes.OCTET_STREAM),
                headers.get(HttpHeaders.SLUG),
            )
        upsert = headers.get(HttpHeaders.IS_UPSERT) == "true"
        return await backend.create(link, await _json_body(request), headers, upsert=upsert)

    if method == "GET":
        return await backend.read(link, headers)
    if method == "PUT":
        return await backend.replace(link, await _json_body(request), headers)
    if method == "DELETE":
        return await backend.delete(link, headers)
    if method == "POST" and link.kind == ResourceKind.STORED_PROCEDURE:
        return await backend.execute_stored_procedure(link, await _json_body(request))
    raise MethodNotAllowedError(f"{method} is not supported on '{link.path}'.")


def _content_type(headers: Dict[str, str]) -> str:
    return headers.get(HttpHeaders.CONTENT_TYPE, "").split(";")[0].strip().lower()


async def _json_body(request: Request) -> Any:
    data = await request.body()
    if not data:
        return None
    try:
        return json.loads(data)
    except ValueError as e:
        raise BadRequestError(f"The request body is not valid JSON: {e}") from None


def _common_headers() -> Dict[str, str]:
    return {
        HttpHeaders.ACTIVITY_ID: str(uuid.uuid4()),
        HttpHeaders.REQUEST_CHARGE: "1",
    }


def _json_response(result: OperationResult) -> Response:
    headers = _common_headers()
    headers.update(result.headers)
    if result.status_code == status.HTTP_204_NO_CONTENT:
        return Response(status_code=status.HTTP_204_NO_CONTENT, headers=headers)
    return JSONResponse(content=result.body, status_code=result.status_code, headers=headers)


def _fault_response(fault: FailureInjectionResult) -> JSONResponse:
    headers = _common_headers()
    if fault.retry_after_ms is not None:
        headers[HttpHeaders.RETRY_AFTER_MS] = str(fault.retry_after_ms)
    message = "Request rate is large" if fault.error_code == 429 else "The service is currently unavailable."
    code = "TooManyRequests" if fault.error_code == 429 else "ServiceUnavailable"
    return JSONResponse(
        status_code=fault.error_code,
        content={"code": code, "message": message},
        headers=headers,
    )


async def _emulator_error_handler(request: Request, exc: EmulatorError) -> JSONResponse:
    logger.debug(f"{request.method} {request.url.path} -> {exc.status_code} {exc.error_code}: {exc.message}")
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict(), headers=_common_headers())


async def _validation_error_handler(request: Request, exc: ValidationError) -> JSONResponse:
    logger.debug(f"{request.method} {request.url.path} -> 400: {exc.message}")
    return JSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST,
        content={"code": "BadRequest", "message": exc.message},
        headers=_common_headers(),
    )

import logging
from collections.abc import Callable
from contextlib import asynccontextmanager

from fastapi import Depends, FastAPI, HTTPException, Query, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from pydantic import ValidationError

from app.auth import guard_reads, require_admin
from app.config import Settings, get_settings
from app.errors import FileManagerError, InvalidRequest
from app.keys import current_millis
from app.log import configure_logging
from app.models import (
    DeleteRequest,
    DeleteResult,
    DownloadUrlRequest,
    DownloadUrlResponse,
    Identity,
    ObjectPage,
    ObjectRecord,
    PresignRequest,
    PresignResponse,
)
from app.service import FileService
from app.signing import SessionSigner
from app.storage import S3BucketStorage

logger = logging.getLogger(__name__)


async def read_delete_request(request: Request) -> DeleteRequest:
    # Parsed as a dependency so the admin guard runs before the body is touched.
    body = await request.body()
    if not body.strip():
        return DeleteRequest()
    try:
        return DeleteRequest.model_validate_json(body)
    except ValidationError as exc:
        raise InvalidRequest("invalid request parameters") from exc


def create_app(
    settings: Settings | None = None,
    storage: S3BucketStorage | None = None,
    clock: Callable[[], int] = current_millis,
) -> FastAPI:
    settings = settings or get_settings()

    storage = storage or S3BucketStorage(settings)
    service = FileService(settings, storage, clock=clock)

    @asynccontextmanager
    async def lifespan(_: FastAPI):
        configure_logging(settings.log_level)
        logger.info("Serving bucket %s (%s)", settings.storage_bucket, settings.app_env)
        yield

    app = FastAPI(title=settings.app_name, lifespan=lifespan)
    app.state.settings = settings
    app.state.service = service
    app.state.session_signer = SessionSigner(settings.app_secret_key)

    @app.get("/")
    def root() -> dict:
        return {"status": "ok", "service": settings.app_name}

    def error_response(status_code: int, message: str, code: str) -> JSONResponse:
        return JSONResponse(
            status_code=status_code,
            content={"error": {"code": code, "message": message}},
        )

    @app.exception_handler(RequestValidationError)
    async def request_validation_exception_handler(_: Request, exc: RequestValidationError):
        missing_fields = [
            ".".join(str(item) for item in error["loc"] if item != "body")
            for error in exc.errors()
            if error.get("type") == "missing"
        ]
        if missing_fields:
            message = f"missing parameters: {', '.join(missing_fields)}"
        else:
            message = "invalid request parameters"
        return error_response(400, message, "bad_request")

    @app.exception_handler(HTTPException)
    async def http_exception_handler(_: Request, exc: HTTPException):
        message = str(exc.detail) if exc.detail else "request failed"
        code_map = {
            400: "bad_request",
            401: "unauthorized",
            403: "forbidden",
            404: "not_found",
            405: "method_not_allowed",
        }
        return error_response(exc.status_code, message, code_map.get(exc.status_code, "error"))

    @app.exception_handler(FileManagerError)
    async def file_manager_exception_handler(_: Request, exc: FileManagerError):
        return error_response(exc.status_code, exc.message, exc.code)

    @app.exception_handler(Exception)
    async def unhandled_exception_handler(request: Request, exc: Exception):
        logger.exception("Unhandled error on %s %s", request.method, request.url.path)
        return error_response(500, "internal server error", "error")

    @app.get("/health")
    def health() -> dict:
        return {"status": "ok", "environment": settings.app_env}

    @app.get("/objects", response_model=list[ObjectRecord], dependencies=[Depends(guard_reads)])
    def list_objects():
        return service.list_objects()

    @app.get("/objects/page", response_model=ObjectPage, dependencies=[Depends(guard_reads)])
    def list_objects_page(
        cursor: str | None = Query(default=None),
        limit: int | None = Query(default=None, ge=1, le=1000),
    ):
        pages = service.iter_object_pages(cursor=cursor, page_size=limit)
        return next(pages, ObjectPage(objects=[]))

    @app.post("/objects/presign", response_model=PresignResponse, dependencies=[Depends(guard_reads)])
    def presign_upload(payload: PresignRequest):
        capability = service.mint_upload_capability(payload.to_intent())
        return PresignResponse(
            upload_url=capability.url,
            key=capability.key,
            expires_at=capability.expires_at,
        )

    @app.post("/objects/download-url", response_model=DownloadUrlResponse, dependencies=[Depends(guard_reads)])
    def presign_download(payload: DownloadUrlRequest):
        capability = service.mint_download_capability(payload.key)
        return DownloadUrlResponse(
            download_url=capability.url,
            key=capability.key,
            expires_at=capability.expires_at,
        )

    @app.delete("/objects", response_model=DeleteResult)
    def delete_object(
        identity: Identity = Depends(require_admin),
        payload: DeleteRequest = Depends(read_delete_request),
    ):
        if payload.file is None:
            raise InvalidRequest("Missing key")
        return service.delete_object(payload.file.key, identity)

    return app


app = create_app()

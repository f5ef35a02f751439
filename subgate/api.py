"""FastAPI interface of the submission gateway.

Routes:
    GET  /health
    POST /submission/category/{category_id}/data          submit data files
    PUT  /submission/category/{category_id}/data          edit existing records
    GET  /submission/{submission_id}                      submission + file status
    POST /submission/category/{category_id}/commit/{submission_id}
    GET  /submitted-data/category/{category_id}              paginated committed records
    GET  /submitted-data/category/{category_id}/id/{system_id}
    POST /submission/commit-event                         Registry post-commit hook

Business-rule failures of a submission are answered with HTTP 200 and a
status plus batch errors; HTTP error codes are reserved for malformed
requests and infrastructure failures.
"""

from __future__ import annotations

import logging
import math
import os
import tempfile
import uuid
from typing import Any, Callable, Dict, List, Optional

from fastapi import APIRouter, Body, Depends, FastAPI, File, Form, Query, Request, UploadFile
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from subgate import __version__
from subgate.analysis_service import AnalysisServiceClient
from subgate.commit_callback import CommitCallback
from subgate.config import Settings, get_settings
from subgate.exceptions import BadRequestError, NotFoundError, PayloadTooLargeError, StatusConflictError, SubgateException
from subgate.file_repository import SubmissionFileRepository
from subgate.file_service import (
    add_analysis_files_to_submitted_record,
    build_submission_file_metadata,
    publish_mapped_submission_files,
)
from subgate.models import UploadedFile
from subgate.registry import SUBMISSION_STATUS_VALID, CommitEvent, SubmissionRegistry
from subgate.sequencing import validate_sequencing_metadata
from subgate.submission_handler import SubmissionHandler

LOGGER = logging.getLogger("subgate.api")

_COPY_CHUNK_SIZE = 1024 * 1024
DEFAULT_PAGE = 1
DEFAULT_PAGE_SIZE = 20


def spool_uploads(files: List[UploadFile], limit_bytes: int) -> List[UploadedFile]:
    """Copy request uploads to temporary files owned by the request.

    Raises:
        PayloadTooLargeError: If any upload exceeds ``limit_bytes``
    """
    spooled: List[UploadedFile] = []
    try:
        for upload in files:
            original_name = os.path.basename(upload.filename or "")
            _, extension = os.path.splitext(original_name)
            with tempfile.NamedTemporaryFile("wb", delete=False, prefix="subgate-", suffix=extension) as handle:
                spooled.append(UploadedFile(path=handle.name, original_name=original_name))
                size = 0
                while True:
                    chunk = upload.file.read(_COPY_CHUNK_SIZE)
                    if not chunk:
                        break
                    size += len(chunk)
                    if size > limit_bytes:
                        raise PayloadTooLargeError(
                            f"File '{original_name}' exceeds the upload limit of {limit_bytes} bytes",
                            details={"file": original_name, "limit_bytes": limit_bytes},
                        )
                    handle.write(chunk)
    except Exception:
        discard_uploads(spooled)
        raise
    return spooled


def discard_uploads(files: List[UploadedFile]) -> None:
    """Remove temporary uploads that were not consumed."""
    for file in files:
        file.delete()


def _username(current_user: Optional[Dict]) -> str:
    return (current_user or {}).get("username") or ""


def create_submission_router(
    handler: SubmissionHandler,
    registry: SubmissionRegistry,
    commit_callback: CommitCallback,
    settings: Settings,
    analysis_client: Optional[AnalysisServiceClient] = None,
    file_repository: Optional[SubmissionFileRepository] = None,
    auth_dependency: Optional[Callable] = None,
) -> APIRouter:
    """Create the submission router.

    Args:
        handler: Submission orchestrator
        registry: Submission Registry collaborator
        commit_callback: Post-commit processor
        settings: Application settings
        analysis_client: Optional Analysis Service client
        file_repository: Optional submission file mapping store
        auth_dependency: Optional authentication dependency returning ``{"username": ...}``

    Returns:
        Configured APIRouter
    """
    router = APIRouter(tags=["submission"])

    if auth_dependency is None:
        def no_auth() -> Optional[Dict]:
            return None
        auth_dependency = no_auth

    files_enabled = analysis_client is not None and file_repository is not None
    upload_limit = settings.get_upload_limit_bytes()

    @router.post("/submission/category/{category_id}/data")
    def submit(
        category_id: int,
        organization: str = Form(...),
        files: Optional[List[UploadFile]] = File(None),
        sequencing_metadata: Optional[str] = Form(None, alias="sequencingMetadata"),
        current_user: Optional[Dict] = Depends(auth_dependency),
    ):
        """Submit data files (one entity per file) with optional sequencing metadata."""
        entries = validate_sequencing_metadata(sequencing_metadata) if sequencing_metadata else None
        uploads = spool_uploads(files or [], upload_limit)
        try:
            response = handler.submit_files(
                uploads,
                category_id=category_id,
                organization=organization,
                username=_username(current_user),
                sequencing_metadata=entries,
            )
        finally:
            discard_uploads(uploads)
        return response.to_dict()

    @router.put("/submission/category/{category_id}/data")
    def edit(
        category_id: int,
        organization: str = Form(...),
        files: Optional[List[UploadFile]] = File(None),
        current_user: Optional[Dict] = Depends(auth_dependency),
    ):
        """Submit edits of existing records."""
        uploads = spool_uploads(files or [], upload_limit)
        try:
            response = handler.edit_files(
                uploads,
                category_id=category_id,
                organization=organization,
                username=_username(current_user),
            )
        finally:
            discard_uploads(uploads)
        return response.to_dict()

    @router.get("/submission/{submission_id}")
    def get_submission(
        submission_id: int,
        current_user: Optional[Dict] = Depends(auth_dependency),
    ):
        """Get a submission with the upload status of its sequencing files."""
        LOGGER.info("Request Get Submission ID '%s'", submission_id)
        submission = registry.get_submission_by_id(submission_id)
        if not submission:
            raise NotFoundError(f"Submission with id '{submission_id}' not found")

        files = []
        if files_enabled:
            files = build_submission_file_metadata(
                file_repository, analysis_client, submission.get("organization", ""), submission_id
            )
        return {**submission, "files": [f.to_dict() for f in files]}

    @router.post("/submission/category/{category_id}/commit/{submission_id}")
    def commit(
        category_id: int,
        submission_id: int,
        current_user: Optional[Dict] = Depends(auth_dependency),
    ):
        """Publish the submission's analyses, then commit it in the Registry."""
        LOGGER.info("Request Commit Active Submission '%s' on category '%s'", submission_id, category_id)
        submission = registry.get_submission_by_id(submission_id)
        if not submission:
            raise BadRequestError(f"Submission '{submission_id}' not found")

        if submission.get("status") != SUBMISSION_STATUS_VALID:
            raise StatusConflictError("Submission does not have status VALID and cannot be committed")

        if files_enabled:
            published = publish_mapped_submission_files(
                file_repository, analysis_client, submission.get("organization", ""), submission_id
            )
            if not published.success:
                raise StatusConflictError(
                    "Cannot commit submission. Files with analysis IDs "
                    f"{','.join(published.failed)} are missing in object storage",
                    details={"failed": published.failed},
                )

        return registry.commit_submission(category_id, submission_id, _username(current_user))

    @router.get("/submitted-data/category/{category_id}")
    def get_submitted_data_by_category(
        category_id: int,
        page: int = Query(DEFAULT_PAGE, ge=1),
        page_size: int = Query(DEFAULT_PAGE_SIZE, ge=1, alias="pageSize"),
        entity_names: Optional[List[str]] = Query(None, alias="entityName"),
        current_user: Optional[Dict] = Depends(auth_dependency),
    ):
        """List committed records of a category, a page at a time."""
        LOGGER.info(
            "Request Submitted Data on categoryId '%s' page '%s' pageSize '%s' entityName '%s'",
            category_id,
            page,
            page_size,
            entity_names,
        )
        result = registry.get_submitted_data_by_category(category_id, page, page_size, entity_names)
        if result.error_message:
            raise NotFoundError(result.error_message)

        records = result.records
        if files_enabled:
            records = [
                add_analysis_files_to_submitted_record(file_repository, analysis_client, record)
                for record in records
            ]
        return {
            "pagination": {
                "currentPage": page,
                "pageSize": page_size,
                "totalPages": math.ceil(result.total_records / page_size),
                "totalRecords": result.total_records,
            },
            "records": records,
        }

    @router.get("/submitted-data/category/{category_id}/id/{system_id}")
    def get_submitted_data(
        category_id: int,
        system_id: str,
        current_user: Optional[Dict] = Depends(auth_dependency),
    ):
        """Get a committed record, with its sequencing files when it has any."""
        LOGGER.info("Request Submitted Data categoryId '%s' systemId '%s'", category_id, system_id)
        record = registry.get_submitted_data_by_system_id(category_id, system_id)
        if not record:
            raise NotFoundError(f"No submitted data found with systemId '{system_id}'")
        if files_enabled:
            record = add_analysis_files_to_submitted_record(file_repository, analysis_client, record)
        return record

    @router.post("/submission/commit-event")
    def commit_event(payload: Dict[str, Any] = Body(...)):
        """Receive the Registry's post-commit notification."""
        try:
            event = CommitEvent.from_dict(payload)
        except (KeyError, TypeError, ValueError) as e:
            raise BadRequestError(f"Invalid commit event: {e}") from e
        thread = commit_callback(event)
        return {
            "submissionId": event.submission_id,
            "indexing": thread is not None,
        }

    return router


def create_app(
    registry: SubmissionRegistry,
    analysis_client: Optional[AnalysisServiceClient] = None,
    file_repository: Optional[SubmissionFileRepository] = None,
    settings: Optional[Settings] = None,
    auth_dependency: Optional[Callable] = None,
) -> FastAPI:
    """Create FastAPI application.

    Args:
        registry: Submission Registry collaborator
        analysis_client: Optional Analysis Service client (enables sequencing submissions)
        file_repository: Optional mapping store (required with analysis_client)
        settings: Optional Settings instance (uses get_settings() if not provided)
        auth_dependency: Optional authentication dependency

    Returns:
        FastAPI application instance
    """
    if settings is None:
        settings = get_settings()

    log_level = getattr(logging, settings.log_level.upper(), logging.INFO)
    logging.basicConfig(
        level=log_level,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
    )
    if settings.is_development:
        logging.getLogger("subgate.submission_handler").setLevel(logging.DEBUG)
        logging.getLogger("subgate.sequencing").setLevel(logging.DEBUG)

    LOGGER.info("Creating subgate application (env=%s, log_level=%s)", settings.subgate_env, settings.log_level)

    handler = SubmissionHandler(
        registry=registry,
        analysis_client=analysis_client,
        file_repository=file_repository,
        settings=settings,
    )
    commit_callback = CommitCallback(file_repository=file_repository, settings=settings)

    app = FastAPI(
        title="subgate",
        description="Clinical data submission gateway",
        version=__version__,
    )

    try:
        cors_origins = settings.get_cors_origins()
    except ValueError as e:
        LOGGER.error("CORS configuration error: %s", e)
        raise
    app.add_middleware(
        CORSMiddleware,
        allow_origins=cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(SubgateException)
    async def subgate_exception_handler(request: Request, exc: SubgateException):
        """Handle all SubgateException subclasses with consistent JSON response."""
        request_id = getattr(request.state, "request_id", None) or str(uuid.uuid4())[:8]
        LOGGER.error(
            "SubgateException: code=%s, message=%s, request_id=%s, path=%s",
            exc.code, exc.message, request_id, request.url.path
        )
        return JSONResponse(
            status_code=exc.status_code,
            content=exc.to_dict(request_id=request_id),
        )

    @app.exception_handler(Exception)
    async def generic_exception_handler(request: Request, exc: Exception):
        """Handle unexpected exceptions with consistent JSON response."""
        request_id = getattr(request.state, "request_id", None) or str(uuid.uuid4())[:8]
        LOGGER.exception(
            "Unhandled exception: %s, request_id=%s, path=%s",
            str(exc), request_id, request.url.path
        )
        return JSONResponse(
            status_code=500,
            content={
                "error": "An internal error occurred",
                "code": "INTERNAL_ERROR",
                "details": {"exception_type": type(exc).__name__} if settings.is_development else {},
                "request_id": request_id,
            },
        )

    @app.middleware("http")
    async def add_request_id(request: Request, call_next):
        """Add request ID to all requests for tracing."""
        request_id = request.headers.get("X-Request-ID") or str(uuid.uuid4())[:8]
        request.state.request_id = request_id
        response = await call_next(request)
        response.headers["X-Request-ID"] = request_id
        return response

    @app.get("/health", tags=["health"])
    def health():
        """Service health check."""
        return {
            "status": "healthy",
            "service": "subgate",
            "version": __version__,
            "sequencing_enabled": handler.sequencing_enabled,
            "indexer_enabled": settings.indexer_enabled,
        }

    app.include_router(
        create_submission_router(
            handler=handler,
            registry=registry,
            commit_callback=commit_callback,
            settings=settings,
            analysis_client=analysis_client,
            file_repository=file_repository,
            auth_dependency=auth_dependency,
        )
    )

    return app

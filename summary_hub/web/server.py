"""FastAPI application exposing the Summary Hub HTTP surface."""

from __future__ import annotations

import asyncio
import contextlib
import contextvars
import functools
import logging
import shutil
import uuid
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, TypeVar, Union

from fastapi import Depends, FastAPI, HTTPException, Request, Response, UploadFile
from fastapi import status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import FileResponse
from pydantic import AliasChoices, BaseModel, ConfigDict, Field
from pydantic import ValidationError as PayloadValidationError
from starlette.datastructures import FormData
from starlette.types import ASGIApp, Receive, Scope, Send

from ..config import AppConfig
from ..services.archive import AssemblyError
from ..services.errors import (
    NotFoundError,
    PayloadTooLargeError,
    StorageError,
    SummaryHubError,
    ValidationError,
)
from ..services.journals import ChatJournal, ModerationLog
from ..services.moderation import ModerationService, RecordChanges
from ..services.naming import resolve_under
from ..services.notifications import NotificationDispatcher, Notifier, build_notifier
from ..services.records import Record, RecordStore
from ..services.sessions import AdminGuard, InMemorySessionStore, SessionStore
from ..services.uploads import IncomingFile, SubmissionForm, UploadPipeline, parse_year

T = TypeVar("T")

SESSION_COOKIE_NAME = "admin_session"
_UPLOAD_CHUNK_SIZE = 1024 * 1024
_SESSION_SWEEP_INTERVAL_SECONDS = 300.0
_NOT_PROVIDED = "Not provided"

_REQUEST_ID_VAR: contextvars.ContextVar[Optional[str]] = contextvars.ContextVar(
    "summary_hub_request_id",
    default=None,
)


def _new_correlation_id() -> str:
    return uuid.uuid4().hex


class RequestContextMiddleware:
    """Assign a correlation identifier to each request and expose it via contextvars."""

    def __init__(self, app: ASGIApp) -> None:
        self.app = app

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope.get("type") != "http":
            await self.app(scope, receive, send)
            return

        request_id = _new_correlation_id()
        scope_state = scope.get("state")
        if scope_state is None:
            scope_state = {}
            scope["state"] = scope_state
        if isinstance(scope_state, dict):
            scope_state["request_id"] = request_id
        else:
            setattr(scope_state, "request_id", request_id)

        request_token = _REQUEST_ID_VAR.set(request_id)
        try:
            await self.app(scope, receive, send)
        finally:
            _REQUEST_ID_VAR.reset(request_token)


class ContextualLoggerAdapter(logging.LoggerAdapter):
    """Logger adapter that injects the request id into records."""

    def process(self, msg: Any, kwargs: Dict[str, Any]) -> tuple[Any, Dict[str, Any]]:  # type: ignore[override]
        extra: Dict[str, Any] = dict(self.extra)
        provided = kwargs.get("extra")
        if isinstance(provided, dict):
            extra.update(provided)
        request_id = _REQUEST_ID_VAR.get()
        if request_id:
            extra.setdefault("request_id", request_id)
            msg = f"{msg} [request_id={request_id}]"
        kwargs["extra"] = extra
        return msg, kwargs


LOGGER = ContextualLoggerAdapter(logging.getLogger(__name__), {})


def _log_event(message: str, **context: Any) -> None:
    details = ", ".join(f"{key}={value}" for key, value in context.items() if value is not None)
    if details:
        LOGGER.info("%s (%s)", message, details)
    else:
        LOGGER.info(message)


def _copy_upload_stream(
    upload: UploadFile,
    target: Path,
    *,
    limit: int,
    chunk_size: int = _UPLOAD_CHUNK_SIZE,
) -> int:
    """Synchronously copy ``upload`` to ``target``; return the byte count."""

    source = upload.file
    if hasattr(source, "seek"):
        with contextlib.suppress(OSError, ValueError):
            source.seek(0)
    written = 0
    with target.open("wb") as buffer:
        while True:
            chunk = source.read(chunk_size)
            if not chunk:
                break
            written += len(chunk)
            if limit > 0 and written > limit:
                raise PayloadTooLargeError(
                    f"'{upload.filename}' exceeds the {limit // (1024 * 1024)} MB upload limit"
                )
            buffer.write(chunk)
    return written


async def _persist_upload_file(upload: UploadFile, target: Path, *, limit: int) -> int:
    """Persist an uploaded file to disk without blocking the event loop."""

    loop = asyncio.get_running_loop()
    copy_operation = functools.partial(_copy_upload_stream, upload, target, limit=limit)
    try:
        return await loop.run_in_executor(None, copy_operation)
    except PayloadTooLargeError:
        with contextlib.suppress(FileNotFoundError):
            target.unlink()
        raise


async def _offload(operation: Callable[..., T], *args: Any) -> T:
    """Run blocking store or file work on the default executor."""

    loop = asyncio.get_running_loop()
    context = contextvars.copy_context()
    return await loop.run_in_executor(None, functools.partial(context.run, operation, *args))


def _http_error(error: SummaryHubError) -> HTTPException:
    if isinstance(error, PayloadTooLargeError):
        return HTTPException(status_code=413, detail=str(error))
    if isinstance(error, ValidationError):
        return HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(error))
    if isinstance(error, NotFoundError):
        return HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(error))
    if isinstance(error, AssemblyError):
        LOGGER.error("Archive assembly failed: %s", error)
        return HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=f"Could not assemble the uploaded files: {error}",
        )
    LOGGER.error("Storage failure: %s", error, exc_info=error)
    return HTTPException(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        detail="A storage error occurred while processing the request",
    )


def normalize_root_path(value: Optional[str]) -> str:
    if value is None:
        return ""
    normalized = value.strip()
    if not normalized:
        return ""
    if not normalized.startswith("/"):
        normalized = f"/{normalized}"
    return normalized.rstrip("/")


class LoginPayload(BaseModel):
    password: str = ""


class VotePayload(BaseModel):
    id: int
    vote: str = Field(..., min_length=1)
    voter: Optional[str] = None


class EditPayload(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    id: int
    kind: Optional[str] = None
    title: Optional[str] = None
    course_name: Optional[str] = Field(None, validation_alias=AliasChoices("courseName", "course_name"))
    author_handle: Optional[str] = Field(
        None, validation_alias=AliasChoices("authorHandle", "author_handle")
    )
    description: Optional[str] = None
    video_url: Optional[str] = Field(None, validation_alias=AliasChoices("videoUrl", "url"))
    year_filter: Optional[Union[int, str]] = Field(
        None, validation_alias=AliasChoices("yearFilter", "year_filter")
    )
    school_year_label: Optional[str] = Field(
        None, validation_alias=AliasChoices("schoolYearLabel", "school_year_label")
    )


class MessagePayload(BaseModel):
    author: str = Field("", validation_alias=AliasChoices("author", "nom"))
    message: str = ""


class ContactPayload(BaseModel):
    author_handle: str = Field(
        _NOT_PROVIDED,
        validation_alias=AliasChoices("authorHandle", "nomDiscord", "discord", "nomDiscordQuestion"),
    )
    email: str = _NOT_PROVIDED
    message: str = _NOT_PROVIDED


def create_app(
    config: AppConfig,
    *,
    notifier: Optional[Notifier] = None,
    session_store: Optional[SessionStore] = None,
    root_path: str | None = None,
) -> FastAPI:
    """Return a configured FastAPI application."""

    store = RecordStore(config)
    moderation_log = ModerationLog(config.logs_file, label="logs")
    chat = ChatJournal(config.chat_file, label="chat")
    notifications = NotificationDispatcher(notifier or build_notifier(config.notifications))
    sessions = session_store or InMemorySessionStore(config.session_ttl_seconds)
    guard = AdminGuard(config.admin_password_hash, sessions)
    pipeline = UploadPipeline(config, store, notifications)
    moderation = ModerationService(config, store, moderation_log)

    async def _sweep_sessions() -> None:
        while True:
            await asyncio.sleep(_SESSION_SWEEP_INTERVAL_SECONDS)
            sessions.sweep_expired()

    @asynccontextmanager
    async def lifespan(_app: FastAPI):
        sweeper = asyncio.create_task(_sweep_sessions())
        try:
            yield
        finally:
            sweeper.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await sweeper
            notifications.shutdown()

    app = FastAPI(
        title="Summary Hub",
        description="Share and browse student course summaries",
        root_path=normalize_root_path(root_path),
        lifespan=lifespan,
    )
    app.add_middleware(RequestContextMiddleware)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.state.config = config
    app.state.record_store = store
    app.state.moderation_log = moderation_log
    app.state.chat = chat
    app.state.notifications = notifications
    app.state.admin_guard = guard
    app.state.upload_pipeline = pipeline
    app.state.moderation = moderation

    def _presented_token(request: Request) -> Optional[str]:
        authorization = request.headers.get("authorization", "")
        if authorization.lower().startswith("bearer "):
            return authorization[7:].strip() or None
        return request.cookies.get(SESSION_COOKIE_NAME) or request.headers.get("x-admin-token")

    def require_admin(request: Request) -> str:
        token = _presented_token(request)
        if not token or not guard.authorize(token):
            raise HTTPException(
                status_code=status.HTTP_401_UNAUTHORIZED,
                detail="Admin session required",
            )
        return token

    admin_only = [Depends(require_admin)]

    def _serialize_record(record: Record) -> Dict[str, Any]:
        payload = record.to_dict()
        payload.pop("voterChoices", None)
        if record.is_file_backed:
            payload["downloadUrl"] = f"{app.root_path}/uploads/{record.storage_locator}"
        else:
            payload["downloadUrl"] = record.storage_locator
        return payload

    def _new_incoming_dir() -> Path:
        directory = config.incoming_root / _new_correlation_id()
        directory.mkdir(parents=True, exist_ok=True)
        return directory

    async def _stage_upload(upload: UploadFile, directory: Path) -> IncomingFile:
        original_name = Path((upload.filename or "").replace("\\", "/")).name
        target = directory / f"{_new_correlation_id()}{Path(original_name).suffix.lower()}"
        size = await _persist_upload_file(upload, target, limit=config.max_upload_bytes)
        return IncomingFile(path=target, original_name=original_name, size_bytes=size)

    async def _read_mapping(request: Request) -> Dict[str, Any]:
        content_type = request.headers.get("content-type", "")
        if "application/json" in content_type:
            try:
                payload = await request.json()
            except ValueError as error:
                raise HTTPException(status_code=400, detail="Invalid JSON body") from error
            if not isinstance(payload, dict):
                raise HTTPException(status_code=400, detail="Expected a JSON object")
            return payload
        form = await request.form()
        try:
            return {key: value for key, value in form.items() if isinstance(value, str)}
        finally:
            await form.close()

    # ------------------------------------------------------------------
    # Uploads
    # ------------------------------------------------------------------
    @app.post("/upload")
    async def upload(request: Request) -> Dict[str, Any]:
        content_type = request.headers.get("content-type", "")
        _log_event("Upload received", content_type=content_type.split(";", 1)[0])
        try:
            if "application/json" in content_type:
                mapping = await _read_mapping(request)
                result = await _offload(pipeline.submit_video, SubmissionForm.from_mapping(mapping))
            elif "multipart/form-data" in content_type or "application/x-www-form-urlencoded" in content_type:
                form: FormData = await request.form()
                incoming_dir = _new_incoming_dir()
                try:
                    submission = SubmissionForm.from_mapping(form)
                    if submission.upload_type == "video":
                        result = await _offload(pipeline.submit_video, submission)
                    elif "multipart/form-data" in content_type:
                        candidate = form.get("file") or form.get("fichier")
                        incoming = None
                        if candidate is not None and not isinstance(candidate, str):
                            incoming = await _stage_upload(candidate, incoming_dir)
                        result = await _offload(pipeline.submit_document, submission, incoming)
                    else:
                        raise HTTPException(status_code=400, detail="Unrecognized upload type")
                finally:
                    await form.close()
                    shutil.rmtree(incoming_dir, ignore_errors=True)
            else:
                raise HTTPException(status_code=400, detail="Unrecognized upload type")
        except SummaryHubError as error:
            raise _http_error(error) from error

        _log_event("Upload stored", record_id=result.record.id, kind=result.record.kind)
        return {"success": True, "message": result.message, "file": _serialize_record(result.record)}

    @app.post("/upload-multi")
    async def upload_multi(request: Request) -> Dict[str, Any]:
        form: FormData = await request.form()
        incoming_dir = _new_incoming_dir()
        try:
            candidates = [
                item
                for item in (*form.getlist("files"), *form.getlist("fichiers"))
                if not isinstance(item, str)
            ]
            _log_event("Multi-file upload received", files=len(candidates))
            if len(candidates) > config.max_batch_files:
                raise ValidationError(
                    f"Too many files: at most {config.max_batch_files} can be combined"
                )
            submission = SubmissionForm.from_mapping(form)
            staged: List[IncomingFile] = []
            for candidate in candidates:
                staged.append(await _stage_upload(candidate, incoming_dir))
            result = await _offload(pipeline.submit_bundle, submission, staged)
        except SummaryHubError as error:
            raise _http_error(error) from error
        finally:
            await form.close()
            shutil.rmtree(incoming_dir, ignore_errors=True)

        _log_event("Archive stored", record_id=result.record.id, size=result.record.size_bytes)
        return {"success": True, "message": result.message, "file": _serialize_record(result.record)}

    # ------------------------------------------------------------------
    # Browsing and voting
    # ------------------------------------------------------------------
    @app.get("/get-files")
    async def get_files(
        year: Optional[str] = None, annee: Optional[str] = None
    ) -> List[Dict[str, Any]]:
        try:
            year_filter = parse_year(year if year is not None else annee)
            records = await _offload(moderation.list_records, year_filter)
        except SummaryHubError as error:
            raise _http_error(error) from error
        return [_serialize_record(record) for record in records]

    @app.get("/uploads/{path:path}")
    async def serve_upload(path: str) -> FileResponse:
        try:
            target = resolve_under(config.upload_root, path)
        except ValueError as error:
            raise HTTPException(status_code=404, detail="File not found") from error
        if not target.is_file():
            raise HTTPException(status_code=404, detail="File not found")
        return FileResponse(target)

    @app.post("/vote")
    async def vote(payload: VotePayload, request: Request) -> Dict[str, int]:
        voter = (
            payload.voter
            or request.headers.get("x-voter-id")
            or (request.client.host if request.client else "")
            or "anonymous"
        )
        try:
            likes, dislikes = await _offload(moderation.vote, payload.id, payload.vote, voter)
        except SummaryHubError as error:
            raise _http_error(error) from error
        return {"likes": likes, "dislikes": dislikes}

    # ------------------------------------------------------------------
    # Administration
    # ------------------------------------------------------------------
    @app.post("/admin/login")
    async def admin_login(payload: LoginPayload, response: Response) -> Dict[str, Any]:
        token = await _offload(guard.login, payload.password)
        if token is None:
            raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Incorrect password")
        response.set_cookie(
            SESSION_COOKIE_NAME,
            token,
            max_age=config.session_ttl_seconds,
            httponly=True,
            samesite="lax",
        )
        _log_event("Admin logged in")
        return {"success": True, "token": token}

    @app.post("/admin/logout")
    async def admin_logout(request: Request, response: Response) -> Dict[str, Any]:
        revoked = guard.logout(_presented_token(request))
        response.delete_cookie(SESSION_COOKIE_NAME)
        return {"success": True, "revoked": revoked}

    @app.get("/api/check-session", dependencies=admin_only)
    async def check_session() -> Dict[str, bool]:
        return {"authenticated": True}

    @app.post("/edit-file", dependencies=admin_only)
    async def edit_file(payload: EditPayload) -> Dict[str, Any]:
        _log_event("Editing record", record_id=payload.id)
        try:
            changes = RecordChanges(
                kind=payload.kind,
                title=payload.title,
                course_name=payload.course_name,
                author_handle=payload.author_handle,
                description=payload.description,
                video_url=payload.video_url,
                year_filter=parse_year(payload.year_filter),
                school_year_label=payload.school_year_label,
            )
            record = await _offload(moderation.edit_record, payload.id, changes)
        except SummaryHubError as error:
            raise _http_error(error) from error
        return {"success": True, "message": "Record updated", "file": _serialize_record(record)}

    @app.delete("/delete-file/{record_id}", dependencies=admin_only)
    async def delete_file(record_id: int) -> Dict[str, Any]:
        _log_event("Deleting record", record_id=record_id)
        try:
            await _offload(moderation.delete_record, record_id)
        except SummaryHubError as error:
            raise _http_error(error) from error
        return {"success": True, "message": "Record deleted"}

    # ------------------------------------------------------------------
    # Chat and moderation log
    # ------------------------------------------------------------------
    @app.post("/add-message")
    async def add_message(payload: MessagePayload) -> Dict[str, Any]:
        author = payload.author.strip()
        message = payload.message.strip()
        if not author or not message:
            raise HTTPException(status_code=400, detail="Author and message are required")
        try:
            entry = await _offload(chat.post, author, message)
        except SummaryHubError as error:
            raise _http_error(error) from error
        return {"success": True, "message": "Message added", "entry": entry}

    @app.get("/get-messages")
    async def get_messages() -> List[Dict[str, Any]]:
        try:
            return await _offload(chat.list)
        except SummaryHubError as error:
            raise _http_error(error) from error

    @app.delete("/delete-message/{entry_id}", dependencies=admin_only)
    async def delete_message(entry_id: int) -> Dict[str, Any]:
        try:
            await _offload(chat.delete, entry_id)
        except SummaryHubError as error:
            raise _http_error(error) from error
        return {"success": True}

    @app.get("/get-logs", dependencies=admin_only)
    async def get_logs() -> List[Dict[str, Any]]:
        try:
            return await _offload(moderation_log.list)
        except SummaryHubError as error:
            raise _http_error(error) from error

    @app.delete("/delete-log/{entry_id}", dependencies=admin_only)
    async def delete_log(entry_id: int) -> Dict[str, Any]:
        try:
            await _offload(moderation_log.delete, entry_id)
        except SummaryHubError as error:
            raise _http_error(error) from error
        return {"success": True}

    @app.delete("/delete-all-logs", dependencies=admin_only)
    async def delete_all_logs() -> Dict[str, Any]:
        try:
            removed = await _offload(moderation_log.clear)
        except SummaryHubError as error:
            raise _http_error(error) from error
        return {"success": True, "removed": removed}

    # ------------------------------------------------------------------
    # Contact
    # ------------------------------------------------------------------
    @app.post("/ask-question", status_code=status.HTTP_202_ACCEPTED)
    async def ask_question(request: Request) -> Dict[str, Any]:
        mapping = await _read_mapping(request)
        try:
            contact = ContactPayload.model_validate(
                {key: value for key, value in mapping.items() if isinstance(value, str) and value.strip()}
            )
        except PayloadValidationError as error:
            raise HTTPException(status_code=400, detail="Invalid contact request") from error
        notifications.dispatch(
            "New contact message",
            "\n".join(
                [
                    f"Handle: {contact.author_handle}",
                    f"Email: {contact.email}",
                    "Message:",
                    contact.message,
                ]
            ),
        )
        _log_event("Contact request queued")
        return {"success": True, "message": "Message sent"}

    return app


__all__ = ["SESSION_COOKIE_NAME", "create_app", "normalize_root_path"]

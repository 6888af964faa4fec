"""File routes: upload, show, list, publish/unpublish, content."""

import base64
import binascii
import logging
import mimetypes
from typing import Annotated, Any, Optional

from fastapi import APIRouter, Depends, Request, status
from fastapi.responses import FileResponse as BlobResponse
from sqlalchemy.ext.asyncio import AsyncSession

from filevault.auth.dependencies import get_current_user, get_optional_user
from filevault.db.session import get_db
from filevault.errors import ValidationError
from filevault.files.models import FileKind, FileResponse, FileUpload
from filevault.files.service import FileStore
from filevault.jobs.queue import JobQueue, ThumbnailJob
from filevault.users.models import User

router = APIRouter(prefix="/files", tags=["files"])
log = logging.getLogger(__name__)


def get_file_store(
    request: Request,
    session: Annotated[AsyncSession, Depends(get_db)],
) -> FileStore:
    return FileStore(session, request.app.state.blobs, request.app.state.settings.page_size)


def get_thumbnail_queue(request: Request) -> JobQueue:
    return request.app.state.thumbnail_queue


def _decode_data(data: Optional[str]) -> Optional[bytes]:
    """Base64 upload body to bytes; empty or missing is None."""
    if not data:
        return None
    try:
        return base64.b64decode(data, validate=True)
    except (binascii.Error, ValueError):
        raise ValidationError("Invalid data")


@router.post("", status_code=status.HTTP_201_CREATED)
async def upload(
    body: FileUpload,
    current_user: Annotated[User, Depends(get_current_user)],
    store: Annotated[FileStore, Depends(get_file_store)],
    queue: Annotated[JobQueue, Depends(get_thumbnail_queue)],
) -> dict[str, Any]:
    """
    Create a file or folder. Images get a thumbnail job once the row is committed,
    so the worker never sees a job for a file it cannot load.
    """
    file = await store.create(
        current_user.id,
        body.name,
        body.kind,
        body.parent_id,
        body.is_public,
        _decode_data(body.data),
    )
    await store.session.commit()
    if file.kind == FileKind.IMAGE.value:
        await queue.enqueue(ThumbnailJob(user_id=current_user.id, file_id=file.id))
    return FileResponse.of(file)


@router.get("")
async def index(
    current_user: Annotated[User, Depends(get_current_user)],
    store: Annotated[FileStore, Depends(get_file_store)],
    parentId: Optional[str] = None,
    page: Optional[str] = None,
) -> list[dict[str, Any]]:
    """One page (20 entries) of the caller's files under parentId (default root)."""
    files = await store.list_children(current_user.id, parentId, page)
    log.debug("index user=%s parent=%s page=%s count=%d", current_user.id, parentId, page, len(files))
    return [FileResponse.of(f) for f in files]


@router.get("/{file_id}")
async def show(
    file_id: str,
    current_user: Annotated[User, Depends(get_current_user)],
    store: Annotated[FileStore, Depends(get_file_store)],
) -> dict[str, Any]:
    file = await store.get_owned(current_user.id, file_id)
    return FileResponse.of(file)


@router.put("/{file_id}/publish")
async def publish(
    file_id: str,
    current_user: Annotated[User, Depends(get_current_user)],
    store: Annotated[FileStore, Depends(get_file_store)],
) -> dict[str, Any]:
    file = await store.set_publication(current_user.id, file_id, True)
    return FileResponse.of(file)


@router.put("/{file_id}/unpublish")
async def unpublish(
    file_id: str,
    current_user: Annotated[User, Depends(get_current_user)],
    store: Annotated[FileStore, Depends(get_file_store)],
) -> dict[str, Any]:
    file = await store.set_publication(current_user.id, file_id, False)
    return FileResponse.of(file)


@router.get("/{file_id}/data")
async def data(
    file_id: str,
    viewer: Annotated[Optional[User], Depends(get_optional_user)],
    store: Annotated[FileStore, Depends(get_file_store)],
    size: Optional[str] = None,
) -> BlobResponse:
    """
    Content of a public file, or of the caller's own file. size=500|250|100
    serves that thumbnail; any other value serves the original.
    """
    file, path = await store.locate_content(viewer.id if viewer else None, file_id, size)
    media_type = mimetypes.guess_type(file.name)[0] or "application/octet-stream"
    return BlobResponse(path=path, media_type=media_type)

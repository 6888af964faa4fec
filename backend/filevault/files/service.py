"""File store: metadata for files and folders, ownership- and visibility-aware."""

import logging
from pathlib import Path
from typing import Any, Optional, Sequence

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from filevault.errors import NotFound, ValidationError
from filevault.files.models import ROOT_ID, File, FileKind
from filevault.files.storage import BlobStorage, new_path_id, variant_id

log = logging.getLogger(__name__)

DEFAULT_PAGE_SIZE = 20
THUMBNAIL_SIZES = (500, 250, 100)

_KINDS = {k.value for k in FileKind}
# SQLite INTEGER range
_MAX_ID = 2**63 - 1


def _to_int(value: Any) -> Optional[int]:
    """int for an int or a string of digits (optionally signed), else None."""
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, str):
        s = value.strip()
        if s.lstrip("-").isdigit():
            return int(s)
    return None


def parse_page(raw: Any) -> int:
    """Page number from a query value. Missing, non-numeric or negative -> 0."""
    page = _to_int(raw)
    if page is None or page < 0:
        return 0
    return page


def parse_parent_id(raw: Any) -> Optional[int]:
    """Parent id from a request value. Missing/empty -> ROOT_ID; garbage -> None."""
    if raw is None or raw == "":
        return ROOT_ID
    parent_id = _to_int(raw)
    if parent_id is None or parent_id < 0:
        return None
    return parent_id


def parse_size(raw: Any) -> Optional[int]:
    """Thumbnail width if raw is exactly one of THUMBNAIL_SIZES, else None (serve original)."""
    if raw is None:
        return None
    if isinstance(raw, int) and not isinstance(raw, bool):
        return raw if raw in THUMBNAIL_SIZES else None
    if isinstance(raw, str) and raw in {str(s) for s in THUMBNAIL_SIZES}:
        return int(raw)
    return None


class FileStore:
    """
    File and folder metadata for one database session.

    Ownership-gated lookups answer NotFound both when a row is missing and when
    it belongs to someone else.
    """

    def __init__(
        self,
        session: AsyncSession,
        blobs: BlobStorage,
        page_size: int = DEFAULT_PAGE_SIZE,
    ) -> None:
        self.session = session
        self.blobs = blobs
        self.page_size = page_size

    async def _get(self, file_id: Any) -> Optional[File]:
        fid = _to_int(file_id)
        if fid is None or not 0 < fid <= _MAX_ID:
            return None
        return await self.session.get(File, fid)

    async def create(
        self,
        user_id: int,
        name: Optional[str],
        kind: Optional[str],
        parent_id: Any = ROOT_ID,
        is_public: bool = False,
        content: Optional[bytes] = None,
    ) -> File:
        """
        Validate and store a new file or folder. For non-folders the bytes are
        written before the row, so a row never points at missing content.
        Caller must commit.
        """
        if not name:
            raise ValidationError("Missing name")
        if not kind or kind not in _KINDS:
            raise ValidationError("Missing type")
        is_folder = kind == FileKind.FOLDER.value
        if content is None and not is_folder:
            raise ValidationError("Missing data")

        pid = parse_parent_id(parent_id)
        if pid is None:
            raise ValidationError("Parent not found")
        if pid != ROOT_ID:
            parent = await self._get(pid)
            if parent is None or parent.user_id != user_id:
                raise ValidationError("Parent not found")
            if not parent.is_folder:
                raise ValidationError("Parent is not a folder")

        content_ref = None
        if not is_folder:
            content_ref = new_path_id()
            self.blobs.write(content_ref, content)

        file = File(
            user_id=user_id,
            name=name,
            kind=kind,
            parent_id=pid,
            is_public=bool(is_public),
            content_ref=content_ref,
        )
        self.session.add(file)
        try:
            await self.session.flush()
        except Exception:
            if content_ref:
                self.blobs.discard(content_ref)
            raise
        log.info(
            "Created %s id=%s user=%s parent=%s public=%s",
            kind, file.id, user_id, pid, file.is_public,
        )
        return file

    async def get_owned(self, user_id: int, file_id: Any) -> File:
        """The file if user_id owns it; NotFound otherwise."""
        file = await self._get(file_id)
        if file is None or file.user_id != user_id:
            raise NotFound(f"file {file_id} for user {user_id}")
        return file

    async def list_children(
        self,
        user_id: int,
        parent_id: Any = ROOT_ID,
        page: Any = 0,
        page_size: Optional[int] = None,
    ) -> Sequence[File]:
        """One page of user_id's entries directly under parent_id, in insertion order."""
        pid = parse_parent_id(parent_id)
        if pid is None:
            return []
        size = page_size or self.page_size
        offset = parse_page(page) * size
        result = await self.session.execute(
            select(File)
            .where(File.user_id == user_id, File.parent_id == pid)
            .order_by(File.id)
            .offset(offset)
            .limit(size)
        )
        return result.scalars().all()

    async def set_publication(self, user_id: int, file_id: Any, is_public: bool) -> File:
        """Change visibility of an owned file. Caller must commit."""
        file = await self.get_owned(user_id, file_id)
        file.is_public = is_public
        await self.session.flush()
        log.info("File id=%s user=%s public=%s", file.id, user_id, is_public)
        return file

    async def resolve_for_serving(self, viewer_id: Optional[int], file_id: Any) -> File:
        """The file if it is public or viewer_id owns it. viewer_id may be None."""
        file = await self._get(file_id)
        if file is None:
            raise NotFound(f"file {file_id}")
        if file.is_public or (viewer_id is not None and file.user_id == viewer_id):
            return file
        raise NotFound(f"file {file_id} hidden from {viewer_id}")

    async def _content_id(
        self, viewer_id: Optional[int], file_id: Any, size: Any
    ) -> tuple[File, str]:
        file = await self.resolve_for_serving(viewer_id, file_id)
        if file.is_folder:
            raise ValidationError("A folder doesn't have content")
        if not file.content_ref:
            raise NotFound(f"file {file.id} has no content")
        width = parse_size(size)
        if width is not None:
            return file, variant_id(file.content_ref, width)
        return file, file.content_ref

    async def get_content(
        self, viewer_id: Optional[int], file_id: Any, size: Any = None
    ) -> tuple[File, bytes]:
        """
        Bytes of a visible file: the variant for a known thumbnail size, else the
        original. A variant that has not been generated yet is simply NotFound.
        """
        file, blob_id = await self._content_id(viewer_id, file_id, size)
        return file, self.blobs.read(blob_id)

    async def locate_content(
        self, viewer_id: Optional[int], file_id: Any, size: Any = None
    ) -> tuple[File, Path]:
        """Same lookup as get_content, returning the on-disk path instead of the bytes."""
        file, blob_id = await self._content_id(viewer_id, file_id, size)
        return file, self.blobs.locate(blob_id)

    async def count(self) -> int:
        result = await self.session.execute(select(func.count()).select_from(File))
        return result.scalar_one()

"""File/folder SQLAlchemy model and Pydantic schemas."""

import enum
from datetime import datetime
from typing import Any, Optional, Union

from pydantic import AliasChoices, BaseModel, ConfigDict, Field
from sqlalchemy import Boolean, DateTime, ForeignKey, Integer, String, func
from sqlalchemy.orm import Mapped, mapped_column

from filevault.db.session import Base

# parent_id value meaning "top level"
ROOT_ID = 0


class FileKind(str, enum.Enum):
    FOLDER = "folder"
    FILE = "file"
    IMAGE = "image"


class File(Base):
    """
    One row per file or folder. parent_id is ROOT_ID or the id of a folder
    owned by the same user. content_ref is the blob id; None for folders.
    """

    __tablename__ = "files"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[int] = mapped_column(ForeignKey("users.id"), index=True, nullable=False)
    name: Mapped[str] = mapped_column(String(1024), nullable=False)
    kind: Mapped[str] = mapped_column(String(16), nullable=False)
    parent_id: Mapped[int] = mapped_column(Integer, index=True, default=ROOT_ID, nullable=False)
    is_public: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    content_ref: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )

    @property
    def is_folder(self) -> bool:
        return self.kind == FileKind.FOLDER.value


class FileUpload(BaseModel):
    """
    Upload body. data is base64 content (required except for folders).
    Fields are loose on purpose; the file store reports what is missing.
    """

    name: Optional[str] = None
    kind: Optional[str] = Field(default=None, validation_alias=AliasChoices("kind", "type"))
    parent_id: Union[int, str, None] = Field(
        default=ROOT_ID, validation_alias=AliasChoices("parentId", "parent_id")
    )
    is_public: bool = Field(default=False, validation_alias=AliasChoices("isPublic", "is_public"))
    data: Optional[str] = None


class FileResponse(BaseModel):
    """File as returned by API (never includes content or storage ids)."""

    model_config = ConfigDict(from_attributes=True, populate_by_name=True)

    id: int
    user_id: int = Field(serialization_alias="userId")
    name: str
    kind: str
    is_public: bool = Field(serialization_alias="isPublic")
    parent_id: int = Field(serialization_alias="parentId")

    @classmethod
    def of(cls, file: File) -> dict[str, Any]:
        return cls.model_validate(file).model_dump(by_alias=True)

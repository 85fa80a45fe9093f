# @TASK P0-T0.5 - PostgreSQL schema for searchable documents

import uuid
from datetime import datetime

from sqlalchemy import BigInteger, Boolean, DateTime, Integer, String, Text, func
from sqlalchemy.dialects.postgresql import TSVECTOR, UUID
from sqlalchemy.orm import Mapped, mapped_column

from app.constants import DocumentStatus
from app.database import Base


class Document(Base):
    """An uploaded document owned by a single user.

    Only the textual fields (title, description, tags, original_file_name)
    feed the search representation. ``search_vector`` is maintained by the
    ``documents_search_vector_trigger`` database trigger and must never be
    assigned by application code.
    """

    __tablename__ = "documents"

    id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    title: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[str] = mapped_column(Text, default="")
    file_name: Mapped[str] = mapped_column(String(255), nullable=False)  # storage object name
    original_file_name: Mapped[str] = mapped_column(String(255), nullable=False)  # name given by the uploader
    file_size: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)
    file_type: Mapped[str] = mapped_column(String(20), nullable=False)
    mime_type: Mapped[str] = mapped_column(String(255), nullable=False, default="")
    status: Mapped[str] = mapped_column(String(20), default=DocumentStatus.PROCESSING.value)
    tags: Mapped[str] = mapped_column(Text, default="")  # comma-separated
    is_public: Mapped[bool] = mapped_column(Boolean, default=False)
    view_count: Mapped[int] = mapped_column(Integer, default=0)
    download_count: Mapped[int] = mapped_column(Integer, default=0)
    user_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), nullable=False, index=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )
    deleted_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True, index=True)

    # Derived full-text search vector (title A, description B, tags C, filename D)
    search_vector: Mapped[str | None] = mapped_column(TSVECTOR, nullable=True)

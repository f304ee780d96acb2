"""
Post Models

Advertised posts and the allotment letter uploaded for each post.
"""

from datetime import datetime

from sqlalchemy import String, Boolean, ForeignKey, BigInteger, DateTime, func
from sqlalchemy.orm import Mapped, mapped_column, relationship

from database.engine import Base, BigIntPK
from database.models.lifecycle import LifecycleMixin


class Post(Base, LifecycleMixin):
    """A recruitment post (vacancy) within a district."""

    __tablename__ = "posts"

    post_id: Mapped[int] = mapped_column(BigIntPK, primary_key=True, autoincrement=True)
    post_code: Mapped[str] = mapped_column(String(50), unique=True, nullable=False)
    post_name: Mapped[str] = mapped_column(String(255), nullable=False)
    district_id: Mapped[int | None] = mapped_column(BigInteger, index=True)

    # Declared on the post but not used by merit locality (see DESIGN.md)
    local_resident_required: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    local_resident_preferred: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)

    is_closed: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )


class PostAllotmentUpload(Base, LifecycleMixin):
    """Allotment letter PDF stored for a post. The file itself lives on disk."""

    __tablename__ = "post_allotment_uploads"

    upload_id: Mapped[int] = mapped_column(BigIntPK, primary_key=True, autoincrement=True)
    post_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey("posts.post_id"), nullable=False, index=True
    )
    file_name: Mapped[str] = mapped_column(String(255), nullable=False)
    original_name: Mapped[str] = mapped_column(String(255), nullable=False)
    file_path: Mapped[str] = mapped_column(String(1000), nullable=False)
    file_size: Mapped[int | None] = mapped_column(BigInteger)
    mime_type: Mapped[str] = mapped_column(
        String(100), nullable=False, default="application/pdf"
    )
    uploaded_by: Mapped[int | None] = mapped_column(BigInteger)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )

    post: Mapped["Post"] = relationship()

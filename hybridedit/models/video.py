from sqlalchemy import BigInteger, CheckConstraint, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from hybridedit.models.base import Base, TimestampMixin, UUIDMixin


class Video(Base, UUIDMixin, TimestampMixin):
    """Content-addressed source video.

    One physical file per ``sha256`` digest; ``ref_count`` counts the logical
    owners sharing it. Uploads of known content bump the count instead of
    writing a second file.
    """

    __tablename__ = "videos"
    __table_args__ = (CheckConstraint("ref_count >= 0", name="ck_videos_ref_count_non_negative"),)

    user_id: Mapped[str] = mapped_column(String(128), nullable=False, index=True)
    title: Mapped[str] = mapped_column(String(255), nullable=False)

    sha256: Mapped[str] = mapped_column(String(64), nullable=False, unique=True, index=True)
    ref_count: Mapped[int] = mapped_column(Integer, default=1, server_default="1", nullable=False)

    file_path: Mapped[str] = mapped_column(Text, nullable=False)
    file_size: Mapped[int] = mapped_column(BigInteger, default=0, nullable=False)

    def __repr__(self) -> str:
        return f"<Video {self.title} refs={self.ref_count}>"

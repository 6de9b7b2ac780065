# Base for SQLModel classes

from datetime import datetime
from typing import Optional

from sqlmodel import Field, SQLModel

from ..core.time_utils import utc_now


class Post(SQLModel, table=True):
    """A generated post for one watched media folder."""
    folder_sha: str = Field(primary_key=True, max_length=40)  # SHA-1 of the folder's relative path
    post_filename: str = Field(max_length=60)
    categories: str = Field(default="")  # "/"-joined parent folders
    tags: str = Field(default="[]")  # JSON list
    rel_path: str = Field(index=True)  # Relative to the watched root
    n_file: int = Field(default=0)
    created_at: datetime = Field(default_factory=utc_now)
    updated_at: Optional[datetime] = None

# file_schema.py
from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

from models.models import File


class FileCreate(BaseModel):
    """Metadata for a file already uploaded to external storage."""

    name: str = Field(..., min_length=1, max_length=255)
    url: str = Field(..., min_length=1, max_length=1000)
    size: int = Field(default=0, ge=0)
    type: Optional[str] = Field(default=None, max_length=100)

    def to_model(self, uploader_id: str, project_id: str, task_id: Optional[str] = None) -> File:
        return File(
            name=self.name,
            url=self.url,
            size=self.size,
            type=self.type,
            uploader_id=uploader_id,
            project_id=project_id,
            task_id=task_id,
        )


class ProjectFileCreate(FileCreate):
    project_id: str


class FileRead(BaseModel):
    id: str
    name: str
    url: str
    size: int
    type: Optional[str] = None
    uploader_id: str
    project_id: str
    task_id: Optional[str] = None
    is_task_deliverable: bool = False
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


def total_size(files) -> int:
    return sum(f.size for f in files)

# task_schema.py
from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from models.models import TaskPriority, TaskStatus, as_utc
from schemas.file_schema import FileCreate, FileRead


class TaskCreate(BaseModel):
    project_id: str
    title: str = Field(..., min_length=3, max_length=100)
    description: Optional[str] = Field(default=None, max_length=2000)
    status: TaskStatus = Field(default=TaskStatus.TODO)
    priority: TaskPriority = Field(default=TaskPriority.MEDIUM)
    due_date: Optional[datetime] = None
    assignee_id: Optional[str] = None
    files: List[FileCreate] = Field(default_factory=list)  # context files

    @field_validator("title")
    @classmethod
    def title_not_blank(cls, v: str) -> str:
        v = v.strip()
        if len(v) < 3:
            raise ValueError("Task title must be at least 3 characters")
        return v

    @field_validator("due_date")
    @classmethod
    def due_date_in_utc(cls, v: Optional[datetime]) -> Optional[datetime]:
        return as_utc(v)


class TaskRead(BaseModel):
    id: str
    project_id: str
    creator_id: str
    assignee_id: Optional[str] = None
    title: str
    description: Optional[str] = None
    status: TaskStatus
    priority: TaskPriority
    due_date: Optional[datetime] = None
    completion_note: Optional[str] = None
    created_at: datetime
    updated_at: datetime

    model_config = ConfigDict(from_attributes=True)


class TaskDetail(TaskRead):
    files: List[FileRead] = Field(default_factory=list)


class TaskUpdate(BaseModel):
    """Partial update. Only the fields actually sent are applied."""

    title: Optional[str] = Field(default=None, min_length=3, max_length=100)
    description: Optional[str] = Field(default=None, max_length=2000)
    status: Optional[TaskStatus] = None
    priority: Optional[TaskPriority] = None
    due_date: Optional[datetime] = None
    assignee_id: Optional[str] = None
    completion_note: Optional[str] = Field(default=None, max_length=2000)

    @field_validator("due_date")
    @classmethod
    def due_date_in_utc(cls, v: Optional[datetime]) -> Optional[datetime]:
        return as_utc(v)

    def changes(self) -> dict:
        return self.model_dump(exclude_unset=True)

    def is_status_only(self) -> bool:
        return set(self.model_fields_set) == {"status"}


class TaskComplete(BaseModel):
    completion_note: Optional[str] = Field(default=None, max_length=2000)
    files: List[FileCreate] = Field(default_factory=list)  # deliverables

# project_schema.py
from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, EmailStr, Field, field_validator

from models.models import ProjectRole, ProjectStatus, as_utc
from schemas.file_schema import FileCreate


class ProjectCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=100)
    description: Optional[str] = Field(default=None, max_length=500)
    due_date: Optional[datetime] = None
    files: List[FileCreate] = Field(default_factory=list)
    # creator_id is set server-side

    @field_validator("name")
    @classmethod
    def name_not_blank(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("Project name is required")
        return v

    @field_validator("due_date")
    @classmethod
    def due_date_in_utc(cls, v: Optional[datetime]) -> Optional[datetime]:
        return as_utc(v)


class ProjectRead(BaseModel):
    id: str
    name: str
    description: Optional[str] = None
    status: ProjectStatus
    due_date: Optional[datetime] = None
    creator_id: str
    created_at: datetime
    updated_at: datetime

    model_config = ConfigDict(from_attributes=True)


class ProjectUpdate(BaseModel):
    name: Optional[str] = Field(default=None, min_length=1, max_length=100)
    description: Optional[str] = Field(default=None, max_length=500)
    status: Optional[ProjectStatus] = None
    due_date: Optional[datetime] = None

    @field_validator("due_date")
    @classmethod
    def due_date_in_utc(cls, v: Optional[datetime]) -> Optional[datetime]:
        return as_utc(v)


# ---------------------------
# Members
# ---------------------------
class ProjectMemberRead(BaseModel):
    user_id: str
    name: Optional[str] = None
    email: EmailStr
    role: ProjectRole
    is_creator: bool = False
    joined_at: datetime


class MemberRoleUpdate(BaseModel):
    role: ProjectRole

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, EmailStr, Field

from models.models import ProjectRole


# ============================================================
# ✅ Create Invitation (input)
# ============================================================
class InvitationCreate(BaseModel):
    email: EmailStr
    role: ProjectRole = Field(default=ProjectRole.MEMBER)
    # project_id comes from the path, invited_by_id from the current user;
    # token and expiry are generated server-side


# ============================================================
# ✅ Read Invitation (output)
# ============================================================
class InvitationRead(BaseModel):
    id: str
    project_id: str
    email: EmailStr
    role: ProjectRole
    invited_by_id: Optional[str] = None
    expires_at: datetime
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


# ============================================================
# ✅ Public token lookup (what the accept page shows)
# ============================================================
class InvitationPreview(BaseModel):
    project_id: str
    project_name: str
    email: EmailStr
    role: ProjectRole
    invited_by: Optional[str] = None
    expires_at: datetime


# ============================================================
# ✅ Accept Invitation
# ============================================================
class InvitationAccept(BaseModel):
    token: str = Field(..., min_length=1)

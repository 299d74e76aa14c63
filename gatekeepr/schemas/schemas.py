"""Pydantic schemas for API request/response serialization."""

from pydantic import BaseModel, ConfigDict, Field
from typing import Optional, List, Dict, Any
from datetime import date, datetime

from gatekeepr.models.access_request import AccessStatus


# ---- Auth / setup ----
class LoginRequest(BaseModel):
    email: str = Field(..., min_length=3)
    password: str = Field(..., min_length=1)

class SetupRequest(BaseModel):
    email: str = Field(..., min_length=3)
    password: str
    first_name: Optional[str] = None
    last_name: Optional[str] = None

class SetupStatus(BaseModel):
    setup_required: bool

class TokenResponse(BaseModel):
    token: str
    user: Dict[str, Any]
    roles: List[str] = []


# ---- Common ----
class TargetRef(BaseModel):
    """Polymorphic (target_type, target_id) reference to an access target."""
    model_config = ConfigDict(frozen=True)

    target_type: str
    target_id: int

class ActionResult(BaseModel):
    """Outcome of a single mutation.

    ``affected`` is set for conditional transitions, where zero rows is a
    legitimate outcome the caller may want to inspect.
    """
    id: Optional[int] = None
    message: str
    affected: Optional[int] = None

class BulkResult(BaseModel):
    message: str
    assignments: Optional[int] = None
    memberships: Optional[int] = None
    grants: Optional[int] = None
    removals: Optional[int] = None
    users_affected: Optional[int] = None
    groups_affected: Optional[int] = None


# ---- User ----
class UserOut(BaseModel):
    id: int
    email: str
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    is_active: bool = True
    created_at: Optional[datetime] = None

    class Config:
        from_attributes = True

class MeResponse(BaseModel):
    user: UserOut
    roles: List[str]
    permissions: List[str]


# ---- Permission ----
class PermissionCreate(BaseModel):
    name: str = Field(..., min_length=1)
    display_name: str = Field(..., min_length=1)
    description: Optional[str] = None
    category: str = Field(..., min_length=1)

class PermissionPatch(BaseModel):
    display_name: Optional[str] = None
    description: Optional[str] = None
    category: Optional[str] = None

class PermissionOut(BaseModel):
    id: int
    name: str
    display_name: str
    description: Optional[str] = None
    category: str
    created_at: Optional[datetime] = None

    class Config:
        from_attributes = True


# ---- Role ----
class RoleCreate(BaseModel):
    name: str = Field(..., min_length=1)
    display_name: str = Field(..., min_length=1)
    description: Optional[str] = None
    hierarchy_level: int = 0
    can_grant_access: bool = False
    can_approve_requests: bool = False

class RolePatch(BaseModel):
    display_name: Optional[str] = None
    description: Optional[str] = None
    hierarchy_level: Optional[int] = None
    can_grant_access: Optional[bool] = None
    can_approve_requests: Optional[bool] = None

class RoleOut(BaseModel):
    id: int
    name: str
    display_name: str
    description: Optional[str] = None
    hierarchy_level: int
    can_grant_access: bool
    can_approve_requests: bool
    is_system_role: bool
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    user_count: Optional[int] = None

    class Config:
        from_attributes = True

class RoleDetail(RoleOut):
    permissions: List[PermissionOut] = []

class PermissionIds(BaseModel):
    permission_ids: List[int] = []

class RoleAssignment(BaseModel):
    user_id: int
    role_id: int


# ---- Group ----
class GroupCreate(BaseModel):
    name: str = Field(..., min_length=1)
    display_name: str = Field(..., min_length=1)
    description: Optional[str] = None

class GroupPatch(BaseModel):
    display_name: Optional[str] = None
    description: Optional[str] = None

class GroupOut(BaseModel):
    id: int
    name: str
    display_name: str
    description: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    member_count: Optional[int] = None

    class Config:
        from_attributes = True

class GroupDetail(GroupOut):
    permissions: List[PermissionOut] = []

class GroupMembersAdd(BaseModel):
    user_ids: List[int]

class GroupMemberOut(BaseModel):
    user_id: int
    group_id: int
    user_email: Optional[str] = None
    added_by: Optional[int] = None
    added_at: Optional[datetime] = None


# ---- Tool ----
class ToolCreate(BaseModel):
    name: str = Field(..., min_length=1)
    display_name: str = Field(..., min_length=1)
    description: Optional[str] = None
    category: Optional[str] = None
    icon: Optional[str] = None

class ToolPatch(BaseModel):
    display_name: Optional[str] = None
    description: Optional[str] = None
    category: Optional[str] = None
    icon: Optional[str] = None
    is_active: Optional[bool] = None

class ToolOut(BaseModel):
    id: int
    name: str
    display_name: str
    description: Optional[str] = None
    category: Optional[str] = None
    icon: Optional[str] = None
    is_active: bool
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    class Config:
        from_attributes = True


# ---- Access requests ----
class AccessRequestCreate(BaseModel):
    target_type: str = ""
    target_id: int = 0
    access_level: str = "read"
    reason: Optional[str] = None
    duration_minutes: Optional[int] = None

class ApproveRequest(BaseModel):
    duration_minutes: Optional[int] = None

class RejectRequest(BaseModel):
    reason: str = ""

class DirectGrantRequest(BaseModel):
    user_id: int = 0
    target_type: str = ""
    target_id: int = 0
    access_level: str = "read"
    duration_minutes: Optional[int] = None

class RevokeRequest(BaseModel):
    user_id: int = 0
    target_type: str = ""
    target_id: int = 0

class AccessRequestOut(BaseModel):
    id: int
    user_id: int
    request_type: str
    target_type: str
    target_id: int
    access_level: str
    status: AccessStatus
    reason: Optional[str] = None
    duration_minutes: Optional[int] = None
    approved_by: Optional[int] = None
    approved_at: Optional[datetime] = None
    rejected_by: Optional[int] = None
    rejected_at: Optional[datetime] = None
    rejection_reason: Optional[str] = None
    expires_at: Optional[datetime] = None
    created_at: Optional[datetime] = None
    user_email: Optional[str] = None
    target_name: Optional[str] = None

    class Config:
        from_attributes = True

class AccessCheck(BaseModel):
    user_id: int
    target_type: str
    target_id: int
    valid: bool


# ---- Bulk ----
class BulkRolesRequest(BaseModel):
    user_ids: List[int] = []
    role_ids: List[int] = []

class BulkGroupsRequest(BaseModel):
    user_ids: List[int] = []
    group_ids: List[int] = []

class BulkPermissionsRequest(BaseModel):
    group_ids: List[int] = []
    permission_ids: List[int] = []

class BulkGrantRequest(BaseModel):
    user_ids: List[int] = []
    tool_ids: List[int] = []
    access_level: str = "read"


# ---- Audit ----
class AuditLogFilter(BaseModel):
    actor_id: Optional[int] = None
    action: Optional[str] = None
    action_category: Optional[str] = None
    target_type: Optional[str] = None
    target_id: Optional[int] = None
    date_from: Optional[date] = None
    date_to: Optional[date] = None
    sort_by: str = "created_at"
    order: str = "desc"
    page: int = 1
    limit: int = 50

class AuditLogOut(BaseModel):
    id: int
    action: str
    action_category: Optional[str] = None
    actor_id: Optional[int] = None
    actor_email: Optional[str] = None
    target_type: Optional[str] = None
    target_id: Optional[int] = None
    target_name: Optional[str] = None
    details: Optional[str] = None
    old_value: Optional[str] = None
    new_value: Optional[str] = None
    ip_address: Optional[str] = None
    user_agent: Optional[str] = None
    created_at: Optional[datetime] = None

    class Config:
        from_attributes = True

class AuditLogPage(BaseModel):
    data: List[AuditLogOut]
    total: int
    page: int
    limit: int
    total_pages: int

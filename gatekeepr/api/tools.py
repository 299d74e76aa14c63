"""Tools API router."""

from typing import Optional
from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.orm import Session

from gatekeepr.core.security import (
    Identity, RequestContext, RequirePermission, get_current_identity, request_context,
)
from gatekeepr.db.session import get_db
from gatekeepr.schemas.schemas import ActionResult, ToolCreate, ToolOut, ToolPatch
from gatekeepr.services.catalog_service import tool_service

router = APIRouter(prefix="/tools", tags=["tools"])


@router.get("/", response_model=list[ToolOut])
def list_tools(
    category: Optional[str] = Query(None),
    active_only: bool = Query(False),
    db: Session = Depends(get_db),
    identity: Identity = Depends(get_current_identity),
):
    return tool_service.list_tools(db, category, active_only)


@router.get("/categories", response_model=list[str])
def tool_categories(
    db: Session = Depends(get_db),
    identity: Identity = Depends(get_current_identity),
):
    return tool_service.categories(db)


@router.get("/{tool_id}", response_model=ToolOut)
def get_tool(
    tool_id: int,
    db: Session = Depends(get_db),
    identity: Identity = Depends(get_current_identity),
):
    return tool_service.get_tool(db, tool_id)


@router.post("/", response_model=ActionResult, status_code=status.HTTP_201_CREATED)
def create_tool(
    body: ToolCreate,
    db: Session = Depends(get_db),
    identity: Identity = Depends(RequirePermission("tools.create")),
    ctx: RequestContext = Depends(request_context),
):
    return tool_service.create_tool(db, identity.user_id, body, ctx)


@router.put("/{tool_id}", response_model=ActionResult)
def update_tool(
    tool_id: int,
    body: ToolPatch,
    db: Session = Depends(get_db),
    identity: Identity = Depends(RequirePermission("tools.update")),
    ctx: RequestContext = Depends(request_context),
):
    return tool_service.update_tool(db, identity.user_id, tool_id, body, ctx)


@router.delete("/{tool_id}", response_model=ActionResult)
def delete_tool(
    tool_id: int,
    db: Session = Depends(get_db),
    identity: Identity = Depends(RequirePermission("tools.delete")),
    ctx: RequestContext = Depends(request_context),
):
    return tool_service.delete_tool(db, identity.user_id, tool_id, ctx)

from typing import Any, Dict

from fastapi import APIRouter, Body, Depends, HTTPException

from double_ai.api.deps import ChatWorkspace, get_workspace, require_admin
from double_ai.errors import PersonalKeyNotAllowedError, ValidationError

router = APIRouter(prefix="/api", tags=["settings"])


@router.get("/users/{user_id}/settings")
async def get_user_settings(user_id: str, workspace: ChatWorkspace = Depends(get_workspace)):
    """用户设置（个人 key 脱敏）"""
    return await workspace.settings_service.get_user_settings(user_id)


@router.put("/users/{user_id}/settings")
async def update_user_settings(
    user_id: str,
    patch: Dict[str, Any] = Body(...),
    workspace: ChatWorkspace = Depends(get_workspace),
):
    try:
        return await workspace.settings_service.update_user_settings(user_id, patch)
    except PersonalKeyNotAllowedError as e:
        raise HTTPException(status_code=403, detail=e.message)
    except ValidationError as e:
        raise HTTPException(status_code=400, detail={"message": e.message, **e.details})


@router.get("/admin/settings", dependencies=[Depends(require_admin)])
async def get_global_settings(workspace: ChatWorkspace = Depends(get_workspace)):
    """全局设置（全局 key 脱敏）"""
    return await workspace.settings_service.get_global_settings()


@router.put("/admin/settings", dependencies=[Depends(require_admin)])
async def update_global_settings(
    patch: Dict[str, Any] = Body(...),
    workspace: ChatWorkspace = Depends(get_workspace),
):
    try:
        return await workspace.settings_service.update_global_settings(patch)
    except ValidationError as e:
        raise HTTPException(status_code=400, detail={"message": e.message, **e.details})

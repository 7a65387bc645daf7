from __future__ import annotations

from fastapi import APIRouter, Depends

from tenant_rbac.auth.dependencies import get_member_service, get_principal
from tenant_rbac.auth.models import Principal
from tenant_rbac.configs.logging_config import get_logger
from tenant_rbac.domain.entities.member import CreateMemberRequest, UpdateRoleRequest
from tenant_rbac.services.member_service import MemberService
from tenant_rbac.utils.response import success

log = get_logger(__name__)

router = APIRouter(prefix="/api/admin/users", tags=["members"])


def _pid(principal: Principal | None) -> str:
    return principal.user_id if principal else "anonymous"


@router.get("")
async def list_members(
    principal: Principal | None = Depends(get_principal),
    svc: MemberService = Depends(get_member_service),
) -> dict:
    rows = await svc.list_members(principal)
    log.info("members.list.done principal=%s returned=%s", _pid(principal), len(rows))
    return success([r.model_dump(mode="json") for r in rows], message="Request successful")


@router.post("")
async def create_member(
    body: CreateMemberRequest,
    principal: Principal | None = Depends(get_principal),
    svc: MemberService = Depends(get_member_service),
) -> dict:
    log.info("members.create.start request_id=%s principal=%s role=%s", body.request_id, _pid(principal), body.role)
    result = await svc.create_member(principal, body.email, body.password, body.role)
    log.info("members.create.done request_id=%s principal=%s", body.request_id, _pid(principal))
    return success(result.data, message=result.message)


@router.put("/{profile_id}/role")
async def update_role(
    profile_id: str,
    body: UpdateRoleRequest,
    principal: Principal | None = Depends(get_principal),
    svc: MemberService = Depends(get_member_service),
) -> dict:
    log.info(
        "members.update_role.start request_id=%s principal=%s profile_id=%s role=%s",
        body.request_id,
        _pid(principal),
        profile_id,
        body.role,
    )
    result = await svc.update_role(principal, profile_id, body.role)
    log.info("members.update_role.done request_id=%s profile_id=%s", body.request_id, profile_id)
    return success(result.data, message=result.message)


@router.delete("/{principal_id}")
async def remove_member(
    principal_id: str,
    principal: Principal | None = Depends(get_principal),
    svc: MemberService = Depends(get_member_service),
) -> dict:
    log.info("members.remove.start principal=%s target=%s", _pid(principal), principal_id)
    result = await svc.remove_member(principal, principal_id)
    log.info("members.remove.done principal=%s target=%s", _pid(principal), principal_id)
    return success(result.data, message=result.message)

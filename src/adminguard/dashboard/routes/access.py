"""Admin access management API: grant, provision, unblock, revoke."""

from __future__ import annotations

from fastapi import APIRouter, Header, Query, Request

from adminguard.models import GrantRequest, ProvisionRequest
from adminguard.service import AccessManager

router = APIRouter(prefix="/api/2fa/accounts", tags=["access"])


def _manager(request: Request) -> AccessManager:
    return request.app.state.access


@router.get("")
async def list_accounts(request: Request, authorization: str | None = Header(None)):
    manager = _manager(request)
    await manager.authorize(authorization)
    return [a.model_dump(mode="json") for a in await manager.list_accounts()]


@router.post("", status_code=201)
async def grant(body: GrantRequest, request: Request, authorization: str | None = Header(None)):
    manager = _manager(request)
    actor = await manager.authorize(authorization)
    summary = await manager.grant(body.user_id, actor=actor.user_id)
    return summary.model_dump(mode="json")


@router.post("/{user_id}/provision")
async def provision(
    user_id: str,
    request: Request,
    body: ProvisionRequest | None = None,
    authorization: str | None = Header(None),
):
    manager = _manager(request)
    actor = await manager.authorize(authorization)
    body = body or ProvisionRequest()
    result = await manager.provision(
        user_id, account_name=body.account_name, force=body.force, actor=actor.user_id,
    )
    return result.model_dump()


@router.post("/{user_id}/unblock")
async def unblock(user_id: str, request: Request, authorization: str | None = Header(None)):
    manager = _manager(request)
    actor = await manager.authorize(authorization)
    summary = await manager.unblock(user_id, actor=actor.user_id)
    return summary.model_dump(mode="json")


@router.delete("/{user_id}")
async def revoke(user_id: str, request: Request, authorization: str | None = Header(None)):
    manager = _manager(request)
    actor = await manager.authorize(authorization)
    await manager.revoke(user_id, actor=actor.user_id)
    return {"ok": True}


@router.get("/{user_id}/events")
async def account_events(
    user_id: str,
    request: Request,
    limit: int = Query(20, le=200),
    authorization: str | None = Header(None),
):
    manager = _manager(request)
    await manager.authorize(authorization)
    return await manager.recent_events(user_id, limit=limit)

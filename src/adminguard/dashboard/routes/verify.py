"""Second-factor verification endpoint."""

from __future__ import annotations

import json

from fastapi import APIRouter, Header, Request

from adminguard.service import VerificationService

router = APIRouter(tags=["verify"])


@router.post("/api/2fa/verify")
async def verify(request: Request, authorization: str | None = Header(None)):
    # Body is parsed by hand so a missing credential wins over a bad body.
    try:
        payload = await request.json()
    except (json.JSONDecodeError, UnicodeDecodeError):
        payload = None
    code = payload.get("code") if isinstance(payload, dict) else None

    verifier: VerificationService = request.app.state.verifier
    result = await verifier.verify(authorization, code)
    return result.model_dump()

"""Estimate generation and lifecycle routes.

Routes:
- POST   /api/sessions/{session_id}/estimate                 - Generate an estimate
- POST   /api/sessions/{session_id}/submit                   - Submit to an expert
- POST   /api/sessions/{session_id}/respond                  - Customer response
- POST   /api/sessions/{session_id}/link                     - Link guest session to a user
- GET    /api/estimates/{estimate_id}                        - Estimate detail
- POST   /api/estimates/{estimate_id}/send                   - Dispatch to customer
- POST   /api/estimates/{estimate_id}/complete               - Mark booked
- POST   /api/estimates/{estimate_id}/items/{item_id}/resolve - Resolve a placeholder
- DELETE /api/estimates/{estimate_id}/items/{item_id}         - Remove an item
- GET    /api/generation-settings                            - Effective settings
- PUT    /api/generation-settings                            - Update overrides
"""

from __future__ import annotations

from dataclasses import asdict

from fastapi import APIRouter, Depends

from tourquote.models import dump_items
from tourquote.services import Services
from tourquote.web.dependencies import get_services
from tourquote.web.models import (
    GenerationSettingsUpdate,
    LinkIdentityRequest,
    RespondRequest,
    ResolvePlaceholderRequest,
)

router = APIRouter(tags=["estimates"])


@router.post("/api/sessions/{session_id}/estimate", status_code=201)
async def generate_estimate(session_id: str, services: Services = Depends(get_services)):
    result = await services.orchestrator.generate_estimate(session_id)
    return {
        "estimate_id": result.estimate_id,
        "share_token": result.share_token,
        "status": result.status,
        "items": dump_items(result.items),
        "has_placeholders": result.has_placeholders,
        "confidence_score": result.metadata.confidence_score,
        "source": result.metadata.source.value,
    }


@router.post("/api/sessions/{session_id}/submit")
async def submit_to_expert(session_id: str, services: Services = Depends(get_services)):
    """Idempotent: repeated or concurrent calls report ``already_submitted``."""
    result = await services.lifecycle.submit_to_expert(session_id)
    return asdict(result)


@router.post("/api/sessions/{session_id}/respond")
async def respond_to_estimate(
    session_id: str,
    body: RespondRequest,
    services: Services = Depends(get_services),
):
    result = await services.lifecycle.respond_to_estimate(
        session_id, body.response, body.revision_details
    )
    return asdict(result)


@router.post("/api/sessions/{session_id}/link", status_code=204)
async def link_session_identity(
    session_id: str,
    body: LinkIdentityRequest,
    services: Services = Depends(get_services),
):
    await services.lifecycle.link_session_identity(session_id, body.user_id)


@router.get("/api/estimates/{estimate_id}")
async def get_estimate(estimate_id: int, services: Services = Depends(get_services)):
    return await services.lifecycle.get_estimate(estimate_id)


@router.post("/api/estimates/{estimate_id}/send")
async def send_estimate(estimate_id: int, services: Services = Depends(get_services)):
    return {"status": await services.lifecycle.send_estimate(estimate_id)}


@router.post("/api/estimates/{estimate_id}/complete")
async def complete_estimate(estimate_id: int, services: Services = Depends(get_services)):
    return {"status": await services.lifecycle.complete_estimate(estimate_id)}


@router.post("/api/estimates/{estimate_id}/items/{item_id}/resolve")
async def resolve_placeholder(
    estimate_id: int,
    item_id: str,
    body: ResolvePlaceholderRequest,
    services: Services = Depends(get_services),
):
    return await services.lifecycle.resolve_placeholder(estimate_id, item_id, body.catalog_id)


@router.delete("/api/estimates/{estimate_id}/items/{item_id}")
async def remove_item(
    estimate_id: int, item_id: str, services: Services = Depends(get_services)
):
    return await services.lifecycle.remove_item(estimate_id, item_id)


@router.get("/api/generation-settings")
async def get_generation_settings(services: Services = Depends(get_services)):
    return (await services.settings.get()).model_dump()


@router.put("/api/generation-settings")
async def update_generation_settings(
    body: GenerationSettingsUpdate, services: Services = Depends(get_services)
):
    settings = await services.settings.update(**body.model_dump(exclude_unset=True))
    return settings.model_dump()

"""
Admin endpoints (company settings, audit trail)
"""

from typing import Any, Dict, Optional
from fastapi import APIRouter, Depends, Header

from .dependencies import get_accounting_system, http_error
from .schemas import UpdateCompanySettingsRequest
from ..system import AccountingSystem
from ..audit import AuditEventType


router = APIRouter()


@router.get("/company")
async def get_company_settings(system: AccountingSystem = Depends(get_accounting_system)) -> Dict[str, Any]:
    """Current company settings"""
    return system.settings.get().to_dict()


@router.put("/company")
async def update_company_settings(
    request: UpdateCompanySettingsRequest,
    actor: Optional[str] = Header(None, alias="X-Actor"),
    system: AccountingSystem = Depends(get_accounting_system)
) -> Dict[str, Any]:
    """Update company settings; cached values are refreshed immediately"""
    try:
        return system.settings.update(actor=actor, **request.changes()).to_dict()
    except Exception as e:
        raise http_error(e)


@router.get("/audit/events")
async def get_audit_events(
    entity_type: Optional[str] = None,
    entity_id: Optional[str] = None,
    event_type: Optional[str] = None,
    actor: Optional[str] = None,
    system: AccountingSystem = Depends(get_accounting_system)
) -> Dict[str, Any]:
    """Audit events for an entity, an event type or an actor"""
    try:
        if entity_type and entity_id:
            events = system.audit_trail.get_events_for_entity(entity_type, entity_id)
        elif event_type:
            events = system.audit_trail.get_events_by_type(AuditEventType(event_type))
        elif actor:
            events = system.audit_trail.get_events_by_actor(actor)
        else:
            raise ValueError("Filter by entity_type and entity_id, event_type or actor")
    except Exception as e:
        raise http_error(e)
    return {"events": [event.to_dict() for event in events]}


@router.get("/audit/verify")
async def verify_audit_trail(
    actor: Optional[str] = Header(None, alias="X-Actor"),
    system: AccountingSystem = Depends(get_accounting_system)
) -> Dict[str, Any]:
    """Verify the audit hash chain"""
    result = system.audit_trail.verify_integrity()
    system.audit_trail.log_event(
        event_type=AuditEventType.AUDIT_INTEGRITY_CHECK,
        entity_type="audit_trail",
        entity_id="audit_events",
        metadata={"valid": result['valid'], "total_events": result['total_events']},
        user_id=actor
    )
    return result

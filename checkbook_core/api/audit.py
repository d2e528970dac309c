"""
Audit trail endpoints
"""

from typing import Optional
from fastapi import APIRouter, HTTPException, Depends

from .auth import CheckSystem, get_check_system
from ..audit import AuditAction, AuditTrail


router = APIRouter()


def _require_trail(system: CheckSystem) -> AuditTrail:
    if system.audit_trail is None:
        raise HTTPException(status_code=404, detail="Audit logging is disabled")
    return system.audit_trail


@router.get("/events")
def get_audit_events(
    entity_type: Optional[str] = None,
    entity_id: Optional[str] = None,
    action: Optional[str] = None,
    limit: Optional[int] = 100,
    system: CheckSystem = Depends(get_check_system)
):
    """Get audit events, by entity or by action"""
    trail = _require_trail(system)

    if entity_type and entity_id:
        events = trail.get_events_for_entity(entity_type, entity_id, limit=limit)
    elif action:
        try:
            audit_action = AuditAction(action.upper())
        except ValueError:
            raise HTTPException(status_code=422, detail=f"Unknown audit action {action}")
        events = trail.get_events_by_action(audit_action, limit=limit)
    else:
        events = trail.get_all_events(limit=limit)

    return {
        "events": [
            {
                "id": event.id,
                "sequence": event.sequence,
                "action": event.action.value,
                "entity_type": event.entity_type,
                "entity_id": event.entity_id,
                "actor_id": event.actor_id,
                "details": event.details,
                "created_at": event.created_at.isoformat()
            }
            for event in events
        ]
    }


@router.get("/integrity")
def verify_audit_integrity(system: CheckSystem = Depends(get_check_system)):
    """Verify the hash chain of the audit trail"""
    return _require_trail(system).verify_integrity()

from database import database
from models import AuditLog, AuditAction
from datetime import datetime
from typing import Optional, Dict, Any
import logging

logger = logging.getLogger(__name__)

def calculate_diff(before: Dict[str, Any], after: Dict[str, Any]) -> Dict[str, Any]:
    """Calculate the differences between before and after states.

    Returns a dict with:
    - added: fields that exist in after but not in before
    - removed: fields that exist in before but not in after
    - changed: fields that exist in both but have different values
    """
    if not before and not after:
        return {}

    if not before:
        return {"added": after, "removed": {}, "changed": {}}

    if not after:
        return {"added": {}, "removed": before, "changed": {}}

    diff = {"added": {}, "removed": {}, "changed": {}}

    for key in set(before.keys()) | set(after.keys()):
        if key not in before:
            diff["added"][key] = after[key]
        elif key not in after:
            diff["removed"][key] = before[key]
        elif before[key] != after[key]:
            diff["changed"][key] = {"from": before[key], "to": after[key]}

    # Remove empty categories
    return {k: v for k, v in diff.items() if v}

async def create_audit_log(
    action: AuditAction,
    actor_address: Optional[str] = None,
    resource_type: Optional[str] = None,
    resource_id: Optional[str] = None,
    before_state: Optional[Dict[str, Any]] = None,
    after_state: Optional[Dict[str, Any]] = None,
    metadata: Optional[Dict[str, Any]] = None,
    ip_address: Optional[str] = None,
) -> str:
    """Create an audit log entry for a referral ledger change.

    Diffs are stored in metadata when both states are given. Audit failures are
    logged and never fail the ledger operation itself.
    """
    try:
        db = database.get_db()

        enriched_metadata = metadata.copy() if metadata else {}
        if before_state and after_state:
            diff = calculate_diff(before_state, after_state)
            if diff:
                enriched_metadata["diff"] = diff

        audit_log = AuditLog(
            action=action,
            actor_address=actor_address,
            resource_type=resource_type,
            resource_id=resource_id,
            before_state=before_state,
            after_state=after_state,
            metadata=enriched_metadata or None,
            ip_address=ip_address,
        )

        doc = audit_log.model_dump()
        doc["action"] = action.value
        doc["timestamp"] = doc["timestamp"].isoformat() if isinstance(doc["timestamp"], datetime) else doc["timestamp"]

        await db.audit_logs.insert_one(doc)
        logger.info(f"Audit log created: {action.value}")
        return audit_log.audit_id
    except Exception as e:
        logger.error(f"Failed to create audit log: {e}")
        return ""


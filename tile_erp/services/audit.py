import json

from ..models.audit import AuditLog


def record(db, entity: str, entity_id, action: str, payload: dict = None):
    """
    Adds one audit row to the current transaction. Commit is the caller's job,
    so the row only exists if the business operation itself committed.
    """
    db.add(
        AuditLog(
            entity=entity,
            entity_id=str(entity_id),
            action=action,
            payload_json=json.dumps(payload or {}, default=str, ensure_ascii=False),
        )
    )

"""
Audit trail capture for successful API calls.

``AuditRecorder.wrap`` decorates a view. Once the view has produced its
response, a 2xx status with an authenticated identity yields exactly one
audit entry. The write happens off the request thread and its failures are
only logged: the caller's response never depends on it.
"""

import logging
from concurrent.futures import ThreadPoolExecutor
from functools import wraps
from typing import Any, Mapping, Optional

from flask import make_response, request

from ehr.api.auth import current_identity
from ehr.config import AUDIT_ACTIONS
from ehr.models import AuditEntry
from ehr.records import insert_audit_entry

logger = logging.getLogger(__name__)


def _as_int(value) -> Optional[int]:
    if isinstance(value, int) and not isinstance(value, bool):
        return value
    return None


def derive_entity_id(view_args: Optional[Mapping[str, Any]], body: Any) -> Optional[int]:
    """Path identifier first, then the ``id`` of a JSON object body, else None."""
    for value in (view_args or {}).values():
        entity_id = _as_int(value)
        if entity_id is not None:
            return entity_id
    if isinstance(body, dict):
        return _as_int(body.get("id"))
    return None


class AuditRecorder:
    """Persists audit entries, in the background unless *background* is False."""

    def __init__(self, engine, background: bool = True, max_workers: int = 2):
        self.engine = engine
        self._executor = None
        if background:
            self._executor = ThreadPoolExecutor(
                max_workers=max_workers, thread_name_prefix="audit"
            )

    def record(self, entry: AuditEntry) -> None:
        """Write one entry. Never raises."""
        try:
            insert_audit_entry(self.engine, entry)
        except Exception:
            logger.exception(
                "[audit] Failed to record %s %s (id=%s) for role %s",
                entry.action, entry.entity_type, entry.entity_id, entry.user_role,
            )

    def submit(self, entry: AuditEntry) -> None:
        if self._executor is None:
            self.record(entry)
            return
        try:
            self._executor.submit(self.record, entry)
        except RuntimeError as e:
            logger.error("[audit] Dropped %s %s: %s", entry.action, entry.entity_type, e)

    def shutdown(self, wait: bool = True) -> None:
        if self._executor is not None:
            self._executor.shutdown(wait=wait)

    def wrap(self, action: str, entity_type: str):
        """Decorator recording *action* on *entity_type* after a successful view."""
        if action not in AUDIT_ACTIONS:
            raise ValueError(f"Unknown audit action: {action}")

        def decorator(f):
            @wraps(f)
            def decorated(*args, **kwargs):
                response = make_response(f(*args, **kwargs))
                if not 200 <= response.status_code < 300:
                    return response

                identity = current_identity()
                if identity is None:
                    return response

                entity_id = derive_entity_id(request.view_args, response.get_json(silent=True))
                self.submit(AuditEntry(
                    user_role=identity.role,
                    action=action,
                    entity_type=entity_type,
                    entity_id=entity_id,
                ))
                return response

            return decorated

        return decorator

"""
Domain dataclasses used across the application.
"""

from dataclasses import dataclass, asdict
from typing import Any, Dict


@dataclass(frozen=True)
class Identity:
    """The identity claim carried by a session token."""
    id: int
    username: str
    role: str  # "doctor", "nurse", or "admin"

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class AuditEntry:
    """A single audit record waiting to be persisted."""
    user_role: str
    action: str
    entity_type: str
    entity_id: Any = None

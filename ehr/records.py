"""
Record Store operations for patients, encounters, prescriptions and audit logs.

Every function takes the engine explicitly and returns plain dicts (or ids), so
route handlers never touch SQLAlchemy result objects directly.
"""

from typing import Any, Dict, List, Optional

from sqlalchemy import insert, or_, select

from ehr.config import MAX_PATIENT_RESULTS, MAX_AUDIT_RESULTS, MAX_RECORD_ID
from ehr.database import (
    audit_logs,
    encounters,
    patients,
    prescriptions,
    row_to_dict,
    users,
)
from ehr.models import AuditEntry


def _insert(engine, table, values: Dict[str, Any]) -> int:
    with engine.begin() as conn:
        result = conn.execute(insert(table).values(**values))
        return int(result.inserted_primary_key[0])


def _fetch_one(engine, stmt) -> Optional[Dict[str, Any]]:
    with engine.connect() as conn:
        row = conn.execute(stmt).mappings().first()
    return row_to_dict(row)


def _fetch_all(engine, stmt) -> List[Dict[str, Any]]:
    with engine.connect() as conn:
        rows = conn.execute(stmt).mappings().all()
    return [row_to_dict(r) for r in rows]


# ── Patients ─────────────────────────────────────────────────────────

def create_patient(engine, full_name, date_of_birth, gender, phone=None) -> int:
    return _insert(engine, patients, {
        "full_name": full_name,
        "date_of_birth": date_of_birth,
        "gender": gender,
        "phone": phone,
    })


def get_patient(engine, patient_id: int) -> Optional[Dict[str, Any]]:
    if not 1 <= patient_id <= MAX_RECORD_ID:
        return None
    return _fetch_one(engine, select(patients).where(patients.c.id == patient_id))


def list_patients(engine, search: Optional[str] = None) -> List[Dict[str, Any]]:
    """Newest patients first, optionally filtered by name or phone."""
    stmt = select(patients)
    if search:
        pattern = f"%{search}%"
        stmt = stmt.where(or_(
            patients.c.full_name.ilike(pattern),
            patients.c.phone.ilike(pattern),
        ))
    stmt = stmt.order_by(patients.c.created_at.desc(), patients.c.id.desc())
    return _fetch_all(engine, stmt.limit(MAX_PATIENT_RESULTS))


# ── Encounters / prescriptions ───────────────────────────────────────

def create_encounter(engine, patient_id, clinician_role, notes=None) -> int:
    return _insert(engine, encounters, {
        "patient_id": patient_id,
        "clinician_role": clinician_role,
        "notes": notes,
    })


def get_encounter(engine, encounter_id: int) -> Optional[Dict[str, Any]]:
    if not 1 <= encounter_id <= MAX_RECORD_ID:
        return None
    return _fetch_one(engine, select(encounters).where(encounters.c.id == encounter_id))


def create_prescription(engine, encounter_id, drug_name, dosage, frequency,
                        duration, created_by) -> int:
    return _insert(engine, prescriptions, {
        "encounter_id": encounter_id,
        "drug_name": drug_name,
        "dosage": dosage,
        "frequency": frequency,
        "duration": duration,
        "created_by": created_by,
    })


def get_patient_records(engine, patient_id: int) -> Optional[Dict[str, Any]]:
    """
    Patient plus all encounters and prescriptions, newest first.
    Prescriptions carry the prescriber's username as ``prescribed_by``.
    Returns None when the patient does not exist.
    """
    patient = get_patient(engine, patient_id)
    if patient is None:
        return None

    encounter_rows = _fetch_all(
        engine,
        select(encounters)
        .where(encounters.c.patient_id == patient_id)
        .order_by(encounters.c.created_at.desc(), encounters.c.id.desc()),
    )
    prescription_rows = _fetch_all(
        engine,
        select(prescriptions, users.c.username.label("prescribed_by"))
        .join(encounters, prescriptions.c.encounter_id == encounters.c.id)
        .join(users, prescriptions.c.created_by == users.c.id)
        .where(encounters.c.patient_id == patient_id)
        .order_by(
            encounters.c.created_at.desc(),
            encounters.c.id.desc(),
            prescriptions.c.created_at.desc(),
            prescriptions.c.id.desc(),
        ),
    )
    return {
        "patient": patient,
        "encounters": encounter_rows,
        "prescriptions": prescription_rows,
    }


# ── Audit logs ───────────────────────────────────────────────────────

def insert_audit_entry(engine, entry: AuditEntry) -> int:
    return _insert(engine, audit_logs, {
        "user_role": entry.user_role,
        "action": entry.action,
        "entity_type": entry.entity_type,
        "entity_id": entry.entity_id,
    })


def list_audit_logs(engine) -> List[Dict[str, Any]]:
    stmt = (
        select(audit_logs)
        .order_by(audit_logs.c.timestamp.desc(), audit_logs.c.id.desc())
        .limit(MAX_AUDIT_RESULTS)
    )
    return _fetch_all(engine, stmt)

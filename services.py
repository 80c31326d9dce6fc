"""
Data layer operations over the JSON store.

Handlers take the store as their first argument and work on plain dicts in the
stored camelCase shape. Reads load the whole document; writes run inside
``store.transaction()`` so a raised error never reaches the file.
"""

import logging
from datetime import date, datetime, timedelta, timezone
from decimal import ROUND_HALF_UP, Decimal
from typing import Any, Callable, Dict, Iterable, List, Optional

from database import COLLECTIONS, Document, Store, new_id
from errors import Conflict, Forbidden, NotFound

logger = logging.getLogger(__name__)

REVIEW_EDIT_WINDOW = timedelta(hours=24)

ENTITY_NAMES = {
    "doctors": "Doctor",
    "patients": "Patient",
    "appointments": "Appointment",
    "prescriptions": "Prescription",
    "reviews": "Review",
}

DOCTOR_PROTECTED = ("id", "rating", "reviewCount")


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def isoformat(value: datetime) -> str:
    return value.astimezone(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def parse_timestamp(value: Any) -> datetime:
    """Parse an ISO date or datetime string; naive values are taken as UTC."""
    text = str(value).strip()
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    parsed = datetime.fromisoformat(text)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def _date_key(record: Dict[str, Any]) -> datetime:
    try:
        return parse_timestamp(record.get("date"))
    except (TypeError, ValueError):
        # undated records sort last
        return datetime.min.replace(tzinfo=timezone.utc)


def _matches(record: Dict[str, Any], filters: Dict[str, Any]) -> bool:
    for key, value in filters.items():
        if value is None:
            continue
        if str(record.get(key)) != str(value):
            return False
    return True


def _find_index(records: List[Dict[str, Any]], entity_id: Any) -> int:
    wanted = str(entity_id)
    for index, record in enumerate(records):
        if str(record.get("id")) == wanted:
            return index
    return -1


def _not_found(collection: str) -> NotFound:
    return NotFound(f"{ENTITY_NAMES[collection]} not found")


def _find(doc: Document, collection: str, entity_id: Any) -> Optional[Dict[str, Any]]:
    index = _find_index(doc[collection], entity_id)
    return doc[collection][index] if index != -1 else None


# Generic resource handlers

def list_entities(store: Store, collection: str, **filters: Any) -> List[Dict[str, Any]]:
    doc = store.load()
    return [r for r in doc[collection] if _matches(r, filters)]


def get_entity(store: Store, collection: str, entity_id: Any) -> Dict[str, Any]:
    record = _find(store.load(), collection, entity_id)
    if record is None:
        raise _not_found(collection)
    return record


def _append(doc: Document, collection: str, record: Dict[str, Any]) -> Dict[str, Any]:
    if not record.get("id"):
        record["id"] = new_id()
    doc[collection].append(record)
    return record


def create_entity(
    store: Store,
    collection: str,
    record: Dict[str, Any],
    prepare: Optional[Callable[[Document, Dict[str, Any]], None]] = None,
) -> Dict[str, Any]:
    """Append a record. ``prepare`` sees the loaded document first and may fill or reject it."""
    with store.transaction() as doc:
        if prepare is not None:
            prepare(doc, record)
        _append(doc, collection, record)
    logger.info("Created %s %s", ENTITY_NAMES[collection].lower(), record["id"])
    return record


def update_entity(
    store: Store,
    collection: str,
    entity_id: Any,
    changes: Dict[str, Any],
    protected: Iterable[str] = ("id",),
    check: Optional[Callable[[Document, Dict[str, Any], Dict[str, Any]], None]] = None,
) -> Dict[str, Any]:
    changes = {k: v for k, v in changes.items() if k not in protected}
    if not changes:
        return get_entity(store, collection, entity_id)
    with store.transaction() as doc:
        index = _find_index(doc[collection], entity_id)
        if index == -1:
            raise _not_found(collection)
        if check is not None:
            check(doc, doc[collection][index], changes)
        doc[collection][index] = {**doc[collection][index], **changes}
        return doc[collection][index]


def delete_entity(store: Store, collection: str, entity_id: Any) -> Dict[str, Any]:
    with store.transaction() as doc:
        index = _find_index(doc[collection], entity_id)
        if index == -1:
            raise _not_found(collection)
        removed = doc[collection].pop(index)
    logger.info("Deleted %s %s", ENTITY_NAMES[collection].lower(), removed.get("id"))
    return removed


# Doctors and patients

def _email_taken(profiles: List[Dict[str, Any]], email: Any, exclude_id: Any = None) -> bool:
    wanted = str(email or "").strip().lower()
    return any(
        str(p.get("email", "")).strip().lower() == wanted and str(p.get("id")) != str(exclude_id)
        for p in profiles
    )


def create_profile(store: Store, collection: str, record: Dict[str, Any]) -> Dict[str, Any]:
    """Register a doctor or patient; emails are unique per collection."""

    def unique_email(doc: Document, new: Dict[str, Any]) -> None:
        if _email_taken(doc[collection], new.get("email")):
            raise Conflict("User with this email already exists")

    return create_entity(store, collection, record, prepare=unique_email)


def update_profile(store: Store, collection: str, entity_id: Any, changes: Dict[str, Any]) -> Dict[str, Any]:
    # rating and reviewCount belong to the recompute routine
    protected = DOCTOR_PROTECTED if collection == "doctors" else ("id",)

    def unique_email(doc: Document, current: Dict[str, Any], merged: Dict[str, Any]) -> None:
        if "email" in merged and _email_taken(doc[collection], merged["email"], exclude_id=current.get("id")):
            raise Conflict("User with this email already exists")

    return update_entity(store, collection, entity_id, changes, protected=protected, check=unique_email)


def search_patients(store: Store, search: Optional[str] = None, **filters: Any) -> List[Dict[str, Any]]:
    patients = list_entities(store, "patients", **filters)
    if search:
        needle = search.lower()
        patients = [p for p in patients if needle in str(p.get("name", "")).lower()]
    return patients


# Appointments

def create_appointment(store: Store, record: Dict[str, Any]) -> Dict[str, Any]:
    """Book an appointment, copying display names from the linked records.

    The copies are taken once; later profile edits do not refresh them.
    """

    def copy_names(doc: Document, new: Dict[str, Any]) -> None:
        doctor = _find(doc, "doctors", new.get("doctorId"))
        if doctor is not None:
            new.setdefault("doctorName", doctor.get("name"))
            new.setdefault("specialty", doctor.get("specialty"))
        patient = _find(doc, "patients", new.get("patientId"))
        if patient is not None:
            new.setdefault("patientName", patient.get("name"))

    return create_entity(store, "appointments", record, prepare=copy_names)


def reschedule_appointment(store: Store, appointment_id: Any, new_date: str, new_time: str) -> Dict[str, Any]:
    """Move an appointment; it goes back to pending until the doctor confirms."""
    return update_entity(
        store, "appointments", appointment_id,
        {"date": new_date, "time": new_time, "status": "pending"},
    )


def update_appointment_status(store: Store, appointment_id: Any, status: str) -> Dict[str, Any]:
    return update_entity(store, "appointments", appointment_id, {"status": status})


def appointment_metrics(store: Store, doctor_id: Optional[str] = None) -> Dict[str, Any]:
    appointments = list_entities(store, "appointments", doctorId=doctor_id)

    def count(status: str) -> int:
        return sum(1 for a in appointments if a.get("status") == status)

    return {
        "cards": [
            {"label": "Total Appointments", "value": len(appointments)},
            {"label": "Pending", "value": count("pending")},
            {"label": "Confirmed", "value": count("confirmed") + count("approved")},
            {"label": "Completed", "value": count("completed")},
            {"label": "Cancelled", "value": count("cancelled")},
        ]
    }


# Prescriptions

def create_prescription(store: Store, record: Dict[str, Any], today: Optional[date] = None) -> Dict[str, Any]:
    if not record.get("date"):
        record["date"] = (today or utcnow().date()).isoformat()

    def copy_names(doc: Document, new: Dict[str, Any]) -> None:
        appointment = _find(doc, "appointments", new.get("appointmentId")) or {}
        doctor = _find(doc, "doctors", new.get("doctorId")) or {}
        patient = _find(doc, "patients", new.get("patientId")) or {}
        new.setdefault("doctorName", doctor.get("name") or appointment.get("doctorName"))
        new.setdefault("patientName", patient.get("name") or appointment.get("patientName"))

    return create_entity(store, "prescriptions", record, prepare=copy_names)


def render_prescription(prescription: Dict[str, Any]) -> Dict[str, Any]:
    lines = []
    for m in prescription.get("medicines", []):
        line = ", ".join([str(x) for x in [m.get("name"), m.get("dosage"), m.get("duration")] if x])
        lines.append(line)
    notes = prescription.get("notes")
    if notes:
        lines.append(f"Notes: {notes}")
    return {"preview": "\n".join(lines), "count": len(prescription.get("medicines", []))}


# Medical history

def medical_history(store: Store, patient_id: Any) -> Dict[str, Any]:
    """Merge a patient's appointments and prescriptions into one feed, newest first."""
    doc = store.load()
    patient = _find(doc, "patients", patient_id)
    if patient is None:
        raise _not_found("patients")

    appointments = [a for a in doc["appointments"] if str(a.get("patientId")) == str(patient_id)]
    prescriptions = [p for p in doc["prescriptions"] if str(p.get("patientId")) == str(patient_id)]
    appointments = sorted(appointments, key=_date_key, reverse=True)
    prescriptions = sorted(prescriptions, key=_date_key, reverse=True)

    appointment_ids = {str(a.get("id")) for a in appointments}
    history = [
        {
            "date": a.get("date"),
            "type": "appointment",
            "details": a,
            "prescriptions": [p for p in prescriptions if str(p.get("appointmentId")) == str(a.get("id"))],
        }
        for a in appointments
    ]
    for p in prescriptions:
        if str(p.get("appointmentId")) not in appointment_ids:
            history.append({"date": p.get("date"), "type": "prescription", "details": None, "prescriptions": [p]})

    # stable: equal dates keep appointments ahead of loose prescriptions
    history.sort(key=_date_key, reverse=True)

    return {
        "patient": patient,
        "history": history,
        "stats": {
            "totalAppointments": len(appointments),
            "totalPrescriptions": len(prescriptions),
        },
    }


# Reviews

def recompute_doctor_rating(doc: Document, doctor_id: Any) -> Optional[Dict[str, Any]]:
    """Set a doctor's rating to the mean of their reviews (one decimal) and the count."""
    doctor = _find(doc, "doctors", doctor_id)
    if doctor is None:
        logger.warning("Skipping rating update for unknown doctor %s", doctor_id)
        return None
    ratings = [Decimal(str(r.get("rating", 0))) for r in doc["reviews"] if str(r.get("doctorId")) == str(doctor_id)]
    if ratings:
        mean = sum(ratings) / len(ratings)
        doctor["rating"] = float(mean.quantize(Decimal("0.1"), rounding=ROUND_HALF_UP))
        doctor["reviewCount"] = len(ratings)
    else:
        doctor["rating"] = 0
        doctor["reviewCount"] = 0
    logger.debug("Doctor %s rating %s from %d reviews", doctor_id, doctor["rating"], doctor["reviewCount"])
    return doctor


def review_is_editable(review: Dict[str, Any], now: Optional[datetime] = None) -> bool:
    now = now or utcnow()
    try:
        created = parse_timestamp(review.get("createdAt"))
    except (TypeError, ValueError):
        return False
    return now - created < REVIEW_EDIT_WINDOW


def _editable_review_index(doc: Document, review_id: Any, action: str, now: Optional[datetime]) -> int:
    index = _find_index(doc["reviews"], review_id)
    if index == -1:
        raise _not_found("reviews")
    if not review_is_editable(doc["reviews"][index], now):
        logger.info("Review %s is locked, cannot be %s", review_id, action)
        raise Forbidden(f"Reviews can only be {action} within 24 hours of creation")
    return index


def create_review(store: Store, record: Dict[str, Any], now: Optional[datetime] = None) -> Dict[str, Any]:
    with store.transaction() as doc:
        appointment_id = str(record.get("appointmentId"))
        if any(str(r.get("appointmentId")) == appointment_id for r in doc["reviews"]):
            raise Conflict("A review already exists for this appointment")
        review = {**record, "id": new_id(), "createdAt": isoformat(now or utcnow())}
        doc["reviews"].append(review)
        recompute_doctor_rating(doc, review["doctorId"])
    logger.info("Review %s posted for doctor %s", review["id"], review["doctorId"])
    return review


def update_review(
    store: Store, review_id: Any, changes: Dict[str, Any], now: Optional[datetime] = None
) -> Dict[str, Any]:
    allowed = {k: v for k, v in changes.items() if k in ("rating", "reviewText") and v is not None}
    with store.transaction() as doc:
        index = _editable_review_index(doc, review_id, "edited", now)
        review = {**doc["reviews"][index], **allowed}
        doc["reviews"][index] = review
        recompute_doctor_rating(doc, review.get("doctorId"))
    return review


def delete_review(store: Store, review_id: Any, now: Optional[datetime] = None) -> Dict[str, Any]:
    with store.transaction() as doc:
        index = _editable_review_index(doc, review_id, "deleted", now)
        removed = doc["reviews"].pop(index)
        recompute_doctor_rating(doc, removed.get("doctorId"))
    logger.info("Review %s removed", removed.get("id"))
    return removed


# Diagnostics

def store_counts(doc: Document) -> Dict[str, int]:
    return {f"{name}Count": len(doc.get(name, [])) for name in COLLECTIONS}

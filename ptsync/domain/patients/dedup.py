"""
Patient duplicate detection and merge

Records arriving from the sheet, calendar imports and manual entry can
describe the same person under different ids. Dedup keys are built from
normalized identity fields; two records are duplicates when any non-id key
matches. The batch pass folds every duplicate into the oldest record.
"""

import logging
import re
from datetime import datetime
from typing import Optional

from sqlalchemy.orm import Session

from ...shared.time_utils import utcnow
from ...shared.validators import phone_digits
from ..appointments.repository import AppointmentRepository
from ..appointments.schemas import RecordSyncStatus
from .repository import PatientRepository
from .schemas import AlternateContact, DedupeResult, PatientRecord, PatientStatus

logger = logging.getLogger(__name__)

ID_KEY_PREFIX = "id:"


def normalize_person_name(value: Optional[str]) -> str:
    """First and last alphabetic tokens, lowercased"""
    tokens = re.sub(r"[^a-z\s]", " ", (value or "").lower()).split()
    if not tokens:
        return ""
    if len(tokens) == 1:
        return tokens[0]
    return f"{tokens[0]} {tokens[-1]}"


def normalize_phone_for_match(value: Optional[str]) -> str:
    return phone_digits(value)


def normalize_address_for_match(value: Optional[str]) -> str:
    address = re.sub(r"[^a-z0-9\s]", " ", (value or "").lower())
    return re.sub(r"\s+", " ", address).strip()


def build_dedup_keys(record) -> list[str]:
    """Composite identity keys for any object with id, full_name, phone and address"""
    keys = []
    record_id = (getattr(record, "id", None) or "").strip()
    name = normalize_person_name(getattr(record, "full_name", ""))
    phone = normalize_phone_for_match(getattr(record, "phone", ""))
    address = normalize_address_for_match(getattr(record, "address", ""))

    if record_id:
        keys.append(f"{ID_KEY_PREFIX}{record_id}")
    if not name:
        return keys

    if phone:
        keys.append(f"name_phone:{name}|{phone}")
    if address:
        keys.append(f"name_address:{name}|{address}")
    if bool(phone) != bool(address):
        keys.append(f"name_partial:{name}")
    if not phone and not address:
        keys.append(f"name_only:{name}")

    return keys


def _identity_keys(record) -> set[str]:
    return {key for key in build_dedup_keys(record) if not key.startswith(ID_KEY_PREFIX)}


def are_likely_duplicates(a, b) -> bool:
    # Id keys never count: two people may share an external id by accident
    return bool(_identity_keys(a) & _identity_keys(b))


def _merge_string(preferred: Optional[str], fallback: Optional[str]) -> str:
    preferred = (preferred or "").strip()
    return preferred or (fallback or "").strip()


def _merge_nicknames(a: list[str], b: list[str]) -> list[str]:
    seen = set()
    merged = []
    for nickname in [*a, *b]:
        nickname = (nickname or "").strip()
        if not nickname or nickname.lower() in seen:
            continue
        seen.add(nickname.lower())
        merged.append(nickname)
    return merged


def _merge_alternate_contacts(
    a: list[AlternateContact], b: list[AlternateContact]
) -> list[AlternateContact]:
    seen = set()
    merged = []
    for contact in [*a, *b]:
        first_name = contact.firstName.strip()
        phone = contact.phone.strip()
        relationship = (contact.relationship or "").strip()
        if not first_name or not phone:
            continue

        key = f"{first_name.lower()}|{normalize_phone_for_match(phone)}|{relationship.lower()}"
        if key in seen:
            continue
        seen.add(key)
        merged.append(
            AlternateContact(firstName=first_name, phone=phone, relationship=relationship or None)
        )
    return merged


def _merge_notes(preferred: Optional[str], fallback: Optional[str]) -> str:
    preferred = (preferred or "").strip()
    fallback = (fallback or "").strip()
    if not preferred:
        return fallback
    if not fallback:
        return preferred
    if fallback in preferred:
        return preferred
    if preferred in fallback:
        return fallback
    return f"{preferred}\n{fallback}"


def merge_records(
    primary: PatientRecord, duplicate: PatientRecord, now: Optional[datetime] = None
) -> PatientRecord:
    """Fold duplicate into primary; the result keeps primary's id"""
    if len(primary.full_name.strip()) >= len(duplicate.full_name.strip()):
        full_name = primary.full_name
    else:
        full_name = duplicate.full_name

    # Keep primary's status if it is the default "active" or duplicate is also "active"
    if primary.status == PatientStatus.ACTIVE.value or duplicate.status != PatientStatus.ACTIVE.value:
        status = primary.status
    else:
        status = duplicate.status

    return primary.model_copy(
        update={
            "full_name": full_name.strip() or primary.full_name,
            "nicknames": _merge_nicknames(primary.nicknames, duplicate.nicknames),
            "phone": _merge_string(primary.phone, duplicate.phone),
            "alternate_contacts": _merge_alternate_contacts(
                primary.alternate_contacts, duplicate.alternate_contacts
            ),
            "address": _merge_string(primary.address, duplicate.address),
            "lat": primary.lat if primary.lat is not None else duplicate.lat,
            "lng": primary.lng if primary.lng is not None else duplicate.lng,
            "email": _merge_string(primary.email, duplicate.email) or None,
            "status": status,
            "notes": _merge_notes(primary.notes, duplicate.notes),
            "created_at": min(primary.created_at, duplicate.created_at),
            "updated_at": now or utcnow(),
        }
    )


def dedupe_local_patients(
    db: Session, moved_sync_status: str = RecordSyncStatus.PENDING.value
) -> DedupeResult:
    """
    Merge every duplicate patient into the oldest matching canonical record.

    Each merge writes the canonical record, moves the loser's appointments to
    the canonical id and deletes the loser in a single transaction. Moved
    appointments take moved_sync_status until their calendar events carry the
    canonical id.
    """
    records = [PatientRepository.to_record(p) for p in PatientRepository.list_all(db)]
    records.sort(key=lambda record: record.created_at)

    canonical: list[PatientRecord] = []
    removed_ids: list[str] = []
    canonical_ids: list[str] = []
    moved_appointment_ids: list[str] = []

    for candidate in records:
        match_index = next(
            (
                index
                for index, existing in enumerate(canonical)
                if existing.id != candidate.id and are_likely_duplicates(existing, candidate)
            ),
            None,
        )
        if match_index is None:
            canonical.append(candidate)
            continue

        merged = merge_records(canonical[match_index], candidate)
        try:
            PatientRepository.put(db, merged, commit=False)
            moved = AppointmentRepository.reassign_patient(
                db, candidate.id, merged.id, moved_sync_status
            )
            PatientRepository.delete(db, candidate.id, commit=False)
            db.commit()
        except Exception as e:
            db.rollback()
            logger.error(f"❌ Failed to merge patient {candidate.id} into {merged.id}: {e}")
            raise

        logger.info(
            f"🔄 Merged duplicate patient {candidate.id} into {merged.id} "
            f"({len(moved)} appointments moved)"
        )
        canonical[match_index] = merged
        removed_ids.append(candidate.id)
        moved_appointment_ids.extend(moved)
        if merged.id not in canonical_ids:
            canonical_ids.append(merged.id)

    if removed_ids:
        logger.info(f"📊 Dedup removed {len(removed_ids)} duplicate patients")

    return DedupeResult(
        removedIds=removed_ids,
        canonicalIds=canonical_ids,
        movedAppointmentIds=moved_appointment_ids,
    )

"""
Alternate contacts sheet codec

The Patients tab stores alternate contacts as one cell:
    "Mary|555-111-2222|Daughter; John|555-333-4444"
Entries are separated by ";" and fields by "|". Relationship is optional.
"""

from typing import Union

from .schemas import AlternateContact

ENTRY_SEPARATOR = ";"
PART_SEPARATOR = "|"

ContactLike = Union[AlternateContact, dict]


def parse_alternate_contacts(value: str) -> list[AlternateContact]:
    """Parse a sheet cell into contacts, dropping entries without name or phone"""
    if not value or not value.strip():
        return []

    contacts = []
    for entry in value.split(ENTRY_SEPARATOR):
        entry = entry.strip()
        if not entry:
            continue

        parts = [part.strip() for part in entry.split(PART_SEPARATOR)]
        parts += [""] * (3 - len(parts))
        first_name, phone, relationship = parts[0], parts[1], parts[2]

        if not first_name or not phone:
            continue

        contacts.append(
            AlternateContact(firstName=first_name, phone=phone, relationship=relationship or None)
        )

    return contacts


def _as_contact(contact: ContactLike) -> AlternateContact:
    if isinstance(contact, AlternateContact):
        return contact
    return AlternateContact.model_validate(contact)


def serialize_alternate_contacts(contacts: list[ContactLike]) -> str:
    entries = []
    for contact in contacts or []:
        contact = _as_contact(contact)
        first_name = contact.firstName.strip()
        phone = contact.phone.strip()
        if not first_name or not phone:
            continue

        relationship = (contact.relationship or "").strip()
        fields = [first_name, phone, relationship] if relationship else [first_name, phone]
        entries.append(PART_SEPARATOR.join(fields))

    return f"{ENTRY_SEPARATOR} ".join(entries)

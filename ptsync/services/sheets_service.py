"""
Google Sheets Service
Reads and writes the Patients and DayNotes tabs of the sync spreadsheet
"""

import logging
from datetime import datetime
from typing import Any, Callable, Iterable, Optional, Sequence
from urllib.parse import quote

from ..domain.patients.contacts import parse_alternate_contacts, serialize_alternate_contacts
from ..domain.patients.schemas import PATIENT_STATUSES, PatientRecord, PatientStatus
from ..exceptions import RemoteSchemaError
from ..schemas import SheetDayNote, SheetPatient
from ..shared.time_utils import to_naive_utc
from .google_api import SHEETS_API_BASE, GoogleApiClient, parse_json_object

logger = logging.getLogger(__name__)

PATIENTS_TAB = "Patients"
DAY_NOTES_TAB = "DayNotes"
# Cells are stored exactly as sent so "+1..." phones and ids stay text
VALUE_INPUT_OPTION = "RAW"

PATIENT_HEADERS = [
    "id",
    "fullName",
    "nicknames",
    "phone",
    "alternateContacts",
    "address",
    "lat",
    "lng",
    "status",
    "notes",
    "email",
    "forOtherPtAt",
]

DAY_NOTE_HEADERS = ["id", "date", "text", "color", "startMinutes"]

# Alternate spellings accepted when reading a sheet someone edited by hand
HEADER_ALIASES = {
    "fullname": ["name"],
    "alternatecontacts": ["alternatecontact"],
}


class HeaderIndex:
    """Case-insensitive, order-independent column lookup for one header row"""

    def __init__(self, headers: Sequence[str]):
        self.headers = [str(h).strip() for h in headers]
        self._positions: dict[str, int] = {}
        for position, header in enumerate(self.headers):
            self._positions.setdefault(header.lower(), position)

    def position(self, name: str) -> Optional[int]:
        key = name.lower()
        if key in self._positions:
            return self._positions[key]
        for alias in HEADER_ALIASES.get(key, []):
            if alias in self._positions:
                return self._positions[alias]
        return None

    def value(self, row: Sequence[Any], name: str) -> str:
        position = self.position(name)
        if position is None or position >= len(row):
            return ""
        value = row[position]
        return "" if value is None else str(value).strip()


def _parse_float(value: str) -> Optional[float]:
    try:
        return float(value) if value else None
    except ValueError:
        return None


def _parse_datetime(value: str) -> Optional[datetime]:
    if not value:
        return None
    try:
        return datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return None


def parse_patient_rows(rows: Sequence[Sequence[Any]]) -> list[SheetPatient]:
    """Parse a Patients tab (header row first); rows without id or name are skipped"""
    if len(rows) < 2:
        return []

    index = HeaderIndex(rows[0])
    patients = []
    for row in rows[1:]:
        patient_id = index.value(row, "id")
        full_name = index.value(row, "fullName")
        if not patient_id or not full_name:
            continue

        status = index.value(row, "status").lower()
        for_other_pt_at = _parse_datetime(index.value(row, "forOtherPtAt"))
        patients.append(
            SheetPatient(
                id=patient_id,
                full_name=full_name,
                nicknames=[n.strip() for n in index.value(row, "nicknames").split(",") if n.strip()],
                phone=index.value(row, "phone"),
                alternate_contacts=parse_alternate_contacts(index.value(row, "alternateContacts")),
                address=index.value(row, "address"),
                lat=_parse_float(index.value(row, "lat")),
                lng=_parse_float(index.value(row, "lng")),
                status=status if status in PATIENT_STATUSES else PatientStatus.ACTIVE.value,
                notes=index.value(row, "notes"),
                email=index.value(row, "email") or None,
                for_other_pt_at=to_naive_utc(for_other_pt_at) if for_other_pt_at else None,
            )
        )
    return patients


def patient_to_cells(patient: PatientRecord) -> dict[str, str]:
    return {
        "id": patient.id,
        "fullName": patient.full_name,
        "nicknames": ", ".join(patient.nicknames),
        "phone": patient.phone or "",
        "alternateContacts": serialize_alternate_contacts(patient.alternate_contacts),
        "address": patient.address or "",
        "lat": "" if patient.lat is None else str(patient.lat),
        "lng": "" if patient.lng is None else str(patient.lng),
        "status": patient.status,
        "notes": patient.notes or "",
        "email": patient.email or "",
        "forOtherPtAt": patient.for_other_pt_at.isoformat() if patient.for_other_pt_at else "",
    }


def parse_day_note_rows(rows: Sequence[Sequence[Any]]) -> list[SheetDayNote]:
    if len(rows) < 2:
        return []

    index = HeaderIndex(rows[0])
    notes = []
    for row in rows[1:]:
        note_id = index.value(row, "id")
        date = index.value(row, "date")
        if not note_id or not date:
            continue

        try:
            start_minutes = int(float(index.value(row, "startMinutes")))
        except ValueError:
            start_minutes = 720

        notes.append(
            SheetDayNote(
                id=note_id,
                date=date,
                text=index.value(row, "text"),
                color=index.value(row, "color") or "yellow",
                start_minutes=start_minutes,
            )
        )
    return notes


def day_note_to_cells(note) -> dict[str, str]:
    return {
        "id": note.id,
        "date": note.date,
        "text": note.text or "",
        "color": note.color or "yellow",
        "startMinutes": "" if note.start_minutes is None else str(note.start_minutes),
    }


class GoogleSheetsClient(GoogleApiClient):
    """Spreadsheet collaborator backed by the Sheets v4 REST API"""

    def _values_url(self, spreadsheet_id: str, range_spec: str) -> str:
        return f"{SHEETS_API_BASE}/{quote(spreadsheet_id, safe='')}/values/{quote(range_spec, safe='')}"

    async def read_range(self, spreadsheet_id: str, range_spec: str) -> list[list[str]]:
        response = await self.request(
            "GET", self._values_url(spreadsheet_id, range_spec), "Sheets API error"
        )
        payload = parse_json_object(response, "Sheets read")
        values = payload.get("values", [])
        if not isinstance(values, list):
            raise RemoteSchemaError("Sheets read: values is not a list")
        return values

    async def write_range(self, spreadsheet_id: str, range_spec: str, rows: list[list[Any]]) -> None:
        await self.request(
            "PUT",
            self._values_url(spreadsheet_id, range_spec),
            "Sheets API error",
            params={"valueInputOption": VALUE_INPUT_OPTION},
            json={"values": rows},
        )

    async def append_rows(self, spreadsheet_id: str, range_spec: str, rows: list[list[Any]]) -> None:
        await self.request(
            "POST",
            f"{self._values_url(spreadsheet_id, range_spec)}:append",
            "Sheets API error",
            params={"valueInputOption": VALUE_INPUT_OPTION, "insertDataOption": "INSERT_ROWS"},
            json={"values": rows},
        )

    async def get_sheet_id(self, spreadsheet_id: str, tab_title: str) -> int:
        """Numeric id of a tab, needed for structural edits like row deletion"""
        response = await self.request(
            "GET",
            f"{SHEETS_API_BASE}/{quote(spreadsheet_id, safe='')}",
            "Sheets metadata error",
            params={"fields": "sheets.properties"},
        )
        payload = parse_json_object(response, "Sheets metadata")
        for sheet in payload.get("sheets", []):
            properties = sheet.get("properties", {}) if isinstance(sheet, dict) else {}
            if properties.get("title") == tab_title and "sheetId" in properties:
                return int(properties["sheetId"])
        raise RemoteSchemaError(f"Sheets metadata: tab {tab_title!r} not found")

    async def batch_delete_rows(
        self, spreadsheet_id: str, tab_title: str, row_indices: Iterable[int]
    ) -> int:
        """Delete rows by 0-based index, bottom-up so earlier indices stay valid"""
        indices = sorted(set(row_indices), reverse=True)
        if not indices:
            return 0

        sheet_id = await self.get_sheet_id(spreadsheet_id, tab_title)
        requests = [
            {
                "deleteDimension": {
                    "range": {
                        "sheetId": sheet_id,
                        "dimension": "ROWS",
                        "startIndex": index,
                        "endIndex": index + 1,
                    }
                }
            }
            for index in indices
        ]
        await self.request(
            "POST",
            f"{SHEETS_API_BASE}/{quote(spreadsheet_id, safe='')}:batchUpdate",
            "Sheets batch update error",
            json={"requests": requests},
        )
        return len(indices)

    async def _upsert_row(
        self,
        spreadsheet_id: str,
        tab_title: str,
        default_headers: list[str],
        cells: dict[str, str],
    ) -> None:
        rows = await self.read_range(spreadsheet_id, f"{tab_title}!A:Z")
        if not rows:
            await self.write_range(spreadsheet_id, f"{tab_title}!A1", [default_headers])
            rows = [default_headers]

        index = HeaderIndex(rows[0])
        headers = list(index.headers)
        for name in default_headers:
            if index.position(name) is None:
                headers.append(name)
        if len(headers) != len(index.headers):
            await self.write_range(spreadsheet_id, f"{tab_title}!A1", [headers])
            index = HeaderIndex(headers)

        values = [""] * len(headers)
        for name, value in cells.items():
            position = index.position(name)
            if position is not None:
                values[position] = value

        for row_number, row in enumerate(rows[1:], start=2):
            if index.value(row, "id") == cells["id"]:
                await self.write_range(spreadsheet_id, f"{tab_title}!A{row_number}", [values])
                return

        await self.append_rows(spreadsheet_id, f"{tab_title}!A:Z", [values])

    async def _delete_rows_by_ids(self, spreadsheet_id: str, tab_title: str, ids: Iterable[str]) -> int:
        targets = {i for i in ids if i}
        if not targets:
            return 0

        rows = await self.read_range(spreadsheet_id, f"{tab_title}!A:Z")
        if len(rows) < 2:
            return 0

        index = HeaderIndex(rows[0])
        row_indices = [
            position
            for position, row in enumerate(rows)
            if position > 0 and index.value(row, "id") in targets
        ]
        return await self.batch_delete_rows(spreadsheet_id, tab_title, row_indices)

    async def _fetch(self, spreadsheet_id: str, tab_title: str, parser: Callable) -> list:
        rows = await self.read_range(spreadsheet_id, f"{tab_title}!A:Z")
        return parser(rows)

    async def fetch_patients(self, spreadsheet_id: str) -> list[SheetPatient]:
        patients = await self._fetch(spreadsheet_id, PATIENTS_TAB, parse_patient_rows)
        logger.info(f"📥 Read {len(patients)} patients from sheet {spreadsheet_id}")
        return patients

    async def upsert_patient(self, spreadsheet_id: str, patient: PatientRecord) -> None:
        await self._upsert_row(spreadsheet_id, PATIENTS_TAB, PATIENT_HEADERS, patient_to_cells(patient))
        logger.info(f"✅ Patient {patient.id} written to sheet")

    async def delete_patients_by_ids(self, spreadsheet_id: str, ids: Iterable[str]) -> int:
        return await self._delete_rows_by_ids(spreadsheet_id, PATIENTS_TAB, ids)

    async def fetch_day_notes(self, spreadsheet_id: str) -> list[SheetDayNote]:
        return await self._fetch(spreadsheet_id, DAY_NOTES_TAB, parse_day_note_rows)

    async def upsert_day_note(self, spreadsheet_id: str, note) -> None:
        await self._upsert_row(spreadsheet_id, DAY_NOTES_TAB, DAY_NOTE_HEADERS, day_note_to_cells(note))

    async def delete_day_notes_by_ids(self, spreadsheet_id: str, ids: Iterable[str]) -> int:
        return await self._delete_rows_by_ids(spreadsheet_id, DAY_NOTES_TAB, ids)

"""
Google Calendar Service
Lists, creates, updates and deletes appointment events on the sync calendar
"""

import hashlib
import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Optional
from urllib.parse import quote

from ..exceptions import RemoteSchemaError
from ..schemas import CALENDAR_METADATA_KEYS, RemoteCalendarEvent
from .google_api import CALENDAR_API_BASE, GoogleApiClient, parse_json_object

logger = logging.getLogger(__name__)

MAX_RESULTS_PER_PAGE = 2500
# Guards against a misbehaving API returning nextPageToken forever
MAX_PAGES = 50


def _parse_event_time(value: Optional[str]) -> Optional[datetime]:
    if not value:
        return None
    try:
        return datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return None


def event_id_for_key(idempotency_key: str) -> str:
    """
    Calendar event id for a push, stable across retries of the same queue item.
    Hex digits are a subset of the base32hex alphabet event ids must use.
    """
    return hashlib.sha1(idempotency_key.encode("utf-8")).hexdigest()


def parse_event_items(items: list[dict[str, Any]]) -> list[RemoteCalendarEvent]:
    """Keep timed events with an id; all-day and malformed events are dropped"""
    events = []
    for item in items:
        if not isinstance(item, dict) or not item.get("id"):
            continue

        start = _parse_event_time((item.get("start") or {}).get("dateTime"))
        end = _parse_event_time((item.get("end") or {}).get("dateTime"))
        if start is None or end is None:
            continue

        metadata = (item.get("extendedProperties") or {}).get("private") or {}
        events.append(
            RemoteCalendarEvent(
                google_event_id=item["id"],
                summary=item.get("summary") or "",
                location=item.get("location"),
                description=item.get("description"),
                start=start,
                end=end,
                private_metadata={str(k): str(v) for k, v in metadata.items()},
            )
        )
    return events


def build_event_body(
    appointment,
    patient_name: str,
    address: Optional[str],
    phone: Optional[str],
    timezone_name: str,
) -> dict[str, Any]:
    """
    Build a Calendar API event for an appointment.

    Start and end are wall-clock times in timezone_name; the private
    extended properties let a later pull map the event back to the
    appointment and patient.
    """
    start = datetime.strptime(f"{appointment.date} {appointment.start_time}", "%Y-%m-%d %H:%M")
    end = start + timedelta(minutes=appointment.duration or 60)

    body = {
        "summary": f"PT: {patient_name}",
        "extendedProperties": {
            "private": {
                CALENDAR_METADATA_KEYS["appointment_id"]: appointment.id,
                CALENDAR_METADATA_KEYS["patient_id"]: appointment.patient_id,
                CALENDAR_METADATA_KEYS["patient_name"]: patient_name,
                CALENDAR_METADATA_KEYS["patient_phone"]: phone or "",
                CALENDAR_METADATA_KEYS["patient_address"]: address or "",
                CALENDAR_METADATA_KEYS["status"]: appointment.status,
                CALENDAR_METADATA_KEYS["duration_minutes"]: str(appointment.duration),
                CALENDAR_METADATA_KEYS["visit_type"]: appointment.visit_type or "",
            }
        },
        "start": {"dateTime": start.isoformat(), "timeZone": timezone_name},
        "end": {"dateTime": end.isoformat(), "timeZone": timezone_name},
    }
    if address:
        body["location"] = address
    if appointment.notes:
        body["description"] = appointment.notes
    return body


def _rfc3339(value: datetime) -> str:
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).isoformat().replace("+00:00", "Z")


class GoogleCalendarClient(GoogleApiClient):
    """Calendar collaborator backed by the Calendar v3 REST API"""

    def _events_url(self, calendar_id: str, event_id: Optional[str] = None) -> str:
        url = f"{CALENDAR_API_BASE}/calendars/{quote(calendar_id, safe='')}/events"
        if event_id:
            url = f"{url}/{quote(event_id, safe='')}"
        return url

    async def list_events(
        self, calendar_id: str, time_min: datetime, time_max: datetime
    ) -> list[RemoteCalendarEvent]:
        params = {
            "singleEvents": "true",
            "orderBy": "startTime",
            "maxResults": str(MAX_RESULTS_PER_PAGE),
            "timeMin": _rfc3339(time_min),
            "timeMax": _rfc3339(time_max),
        }

        items: list[dict[str, Any]] = []
        for _ in range(MAX_PAGES):
            response = await self.request(
                "GET", self._events_url(calendar_id), "Calendar API error", params=params
            )
            payload = parse_json_object(response, "Calendar list")
            page_items = payload.get("items", [])
            if not isinstance(page_items, list):
                raise RemoteSchemaError("Calendar list: items is not a list")
            items.extend(page_items)

            page_token = payload.get("nextPageToken")
            if not page_token:
                break
            params = {**params, "pageToken": page_token}
        else:
            logger.warning(f"⚠️ Calendar {calendar_id} listing stopped after {MAX_PAGES} pages")

        events = parse_event_items(items)
        logger.info(f"📥 Read {len(events)} events from calendar {calendar_id}")
        return events

    async def create_event(
        self, calendar_id: str, body: dict[str, Any], event_id: Optional[str] = None
    ) -> str:
        """
        Create an event. With event_id the insert is idempotent: a 409 means an
        earlier attempt already created it, so that event is overwritten instead.
        """
        if event_id:
            body = {**body, "id": event_id}
        response = await self.request(
            "POST",
            self._events_url(calendar_id),
            "Calendar API error",
            json=body,
            allowed_statuses=(409,) if event_id else (),
        )
        if event_id and response.status_code == 409:
            logger.info(f"ℹ️ Google Calendar event {event_id} already exists, updating it")
            await self.update_event(calendar_id, event_id, {**body, "status": "confirmed"})
            return event_id

        created_id = parse_json_object(response, "Calendar create").get("id")
        if not created_id:
            raise RemoteSchemaError("Calendar create: response has no event id")

        logger.info(f"✅ Google Calendar event created: {created_id}")
        return created_id

    async def update_event(self, calendar_id: str, event_id: str, body: dict[str, Any]) -> None:
        await self.request(
            "PUT", self._events_url(calendar_id, event_id), "Calendar API error", json=body
        )
        logger.info(f"✅ Google Calendar event updated: {event_id}")

    async def delete_event(self, calendar_id: str, event_id: str) -> None:
        """Delete an event; an event that is already gone counts as deleted"""
        response = await self.request(
            "DELETE",
            self._events_url(calendar_id, event_id),
            "Calendar API error",
            allowed_statuses=(404, 410),
        )
        if response.status_code in (404, 410):
            logger.info(f"ℹ️ Google Calendar event {event_id} already deleted")
            return
        logger.info(f"✅ Google Calendar event deleted: {event_id}")

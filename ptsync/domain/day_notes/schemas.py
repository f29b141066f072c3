"""Day note schemas - Pydantic models for day note requests"""

from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field, field_validator

from ...shared.validators import validate_iso_date

DEFAULT_START_MINUTES = 720  # noon


class DayNoteColor(str, Enum):
    YELLOW = "yellow"
    BLUE = "blue"
    GREEN = "green"
    PINK = "pink"
    PURPLE = "purple"
    ORANGE = "orange"


DAY_NOTE_COLORS = {color.value for color in DayNoteColor}


def normalize_color(value: Optional[str]) -> str:
    color = (value or "").strip().lower()
    return color if color in DAY_NOTE_COLORS else DayNoteColor.YELLOW.value


class DayNoteCreate(BaseModel):
    date: str
    text: str = ""
    color: DayNoteColor = DayNoteColor.YELLOW
    startMinutes: int = Field(default=DEFAULT_START_MINUTES, ge=0, lt=24 * 60)

    @field_validator("date")
    @classmethod
    def validate_date(cls, v):
        return validate_iso_date(v)


class DayNoteUpdate(BaseModel):
    date: Optional[str] = None
    text: Optional[str] = None
    color: Optional[DayNoteColor] = None
    startMinutes: Optional[int] = Field(default=None, ge=0, lt=24 * 60)

    @field_validator("date")
    @classmethod
    def validate_date(cls, v):
        return validate_iso_date(v) if v is not None else v


class DayNoteMove(BaseModel):
    date: str
    startMinutes: int = Field(ge=0, lt=24 * 60)

    @field_validator("date")
    @classmethod
    def validate_date(cls, v):
        return validate_iso_date(v)


class DayNoteResponse(BaseModel):
    id: str
    date: str
    text: str
    color: str
    startMinutes: Optional[int] = None

    @classmethod
    def from_model(cls, note) -> "DayNoteResponse":
        return cls(
            id=note.id,
            date=note.date,
            text=note.text,
            color=note.color,
            startMinutes=note.start_minutes,
        )

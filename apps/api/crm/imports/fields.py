"""Typed logical fields an import column can be mapped to.

A column mapping is keyed by `StudentField` members plus any number of
`PhoneSlot` entries, so the shape of a mapping is checked when it is parsed
rather than whenever a row is read.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from enum import Enum
from typing import Optional, Union


class StudentField(str, Enum):
    """Single-valued logical fields."""

    NAME = "name"
    EMAIL = "email"
    TAGS = "tags"
    DISCORD_ID = "discordId"
    GROUP_NAME = "enrollment.groupName"
    COURSE_NAME = "enrollment.courseName"
    ENROLLMENT_STATUS = "enrollment.status"


@dataclass(frozen=True, order=True)
class PhoneSlot:
    """Indexed phone column; slot 0 is the student's primary number."""

    index: int

    @property
    def key(self) -> str:
        return "phone" if self.index == 0 else f"phone.{self.index}"


FieldKey = Union[StudentField, PhoneSlot]


class MatchStrategy(str, Enum):
    """How an imported row is resolved to an existing student."""

    NAME = "name"
    EMAIL = "email"
    PHONE = "phone"
    EMAIL_OR_PHONE = "email_or_phone"


class GroupStatus(str, Enum):
    """Pipeline status of a student inside a group."""

    NEW = "NEW"
    IN_PROGRESS = "IN_PROGRESS"
    FOLLOW_UP = "FOLLOW_UP"
    CONVERTED = "CONVERTED"
    LOST = "LOST"


FIELD_LABELS: dict[StudentField, str] = {
    StudentField.NAME: "Name",
    StudentField.EMAIL: "Email",
    StudentField.TAGS: "Tags",
    StudentField.DISCORD_ID: "Discord ID",
    StudentField.GROUP_NAME: "Group name",
    StudentField.COURSE_NAME: "Course name",
    StudentField.ENROLLMENT_STATUS: "Status",
}

REQUIRED_FIELDS = (StudentField.NAME,)

TAG_SEPARATORS = re.compile(r"[,;|]")


def _cell(row: dict[str, str], column: Optional[str]) -> Optional[str]:
    if not column:
        return None
    value = row.get(column)
    if value is None:
        return None
    value = str(value).strip()
    return value or None


@dataclass
class ExtractedRow:
    """Field values read from one source row through a mapping."""

    name: Optional[str] = None
    email: Optional[str] = None
    phones: list[str] = field(default_factory=list)
    tags: list[str] = field(default_factory=list)
    discord_id: Optional[str] = None
    group_name: Optional[str] = None
    course_name: Optional[str] = None
    status: Optional[str] = None


@dataclass(frozen=True)
class ColumnMapping:
    """Logical field to source header."""

    fields: dict[StudentField, str] = field(default_factory=dict)
    phones: dict[int, str] = field(default_factory=dict)

    def column_for(self, key: FieldKey) -> Optional[str]:
        if isinstance(key, PhoneSlot):
            return self.phones.get(key.index)
        return self.fields.get(key)

    def has(self, key: FieldKey) -> bool:
        return self.column_for(key) is not None

    @property
    def has_phone(self) -> bool:
        return bool(self.phones)

    @property
    def phone_columns(self) -> list[str]:
        return [self.phones[index] for index in sorted(self.phones)]

    def items(self) -> list[tuple[FieldKey, str]]:
        entries: list[tuple[FieldKey, str]] = list(self.fields.items())
        entries.extend((PhoneSlot(index), self.phones[index]) for index in sorted(self.phones))
        return entries

    def to_dict(self) -> dict[str, str]:
        """Serialize with canonical string keys (`name`, `phone.1`, ...)."""
        return {
            (key.key if isinstance(key, PhoneSlot) else key.value): column
            for key, column in self.items()
        }

    def extract(self, row: dict[str, str]) -> ExtractedRow:
        phones: list[str] = []
        for column in self.phone_columns:
            value = _cell(row, column)
            if value and value not in phones:
                phones.append(value)

        tags_cell = _cell(row, self.fields.get(StudentField.TAGS))
        tags = []
        if tags_cell:
            tags = [t.strip() for t in TAG_SEPARATORS.split(tags_cell) if t.strip()]

        return ExtractedRow(
            name=_cell(row, self.fields.get(StudentField.NAME)),
            email=_cell(row, self.fields.get(StudentField.EMAIL)),
            phones=phones,
            tags=tags,
            discord_id=_cell(row, self.fields.get(StudentField.DISCORD_ID)),
            group_name=_cell(row, self.fields.get(StudentField.GROUP_NAME)),
            course_name=_cell(row, self.fields.get(StudentField.COURSE_NAME)),
            status=_cell(row, self.fields.get(StudentField.ENROLLMENT_STATUS)),
        )

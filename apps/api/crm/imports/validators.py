"""Validation rules for import mappings and row values."""

from __future__ import annotations

import re
from typing import Any, Iterable, Optional

from crm.imports.errors import (
    IncompatibleMatchStrategy,
    InvalidFieldPath,
    MissingRequiredField,
    UnknownColumn,
)
from crm.imports.fields import (
    REQUIRED_FIELDS,
    ColumnMapping,
    GroupStatus,
    MatchStrategy,
    PhoneSlot,
    StudentField,
)

EMAIL_PATTERN = re.compile(r"^[a-zA-Z0-9._%+-]+@[a-zA-Z0-9.-]+\.[a-zA-Z]{2,}$")

# String keys accepted for single-valued fields, including the `student.`
# and bare spellings used by older clients
FIELD_ALIASES: dict[str, StudentField] = {
    "name": StudentField.NAME,
    "student.name": StudentField.NAME,
    "email": StudentField.EMAIL,
    "student.email": StudentField.EMAIL,
    "tags": StudentField.TAGS,
    "student.tags": StudentField.TAGS,
    "discordId": StudentField.DISCORD_ID,
    "student.discordId": StudentField.DISCORD_ID,
    "enrollment.groupName": StudentField.GROUP_NAME,
    "enrollment.courseName": StudentField.COURSE_NAME,
    "enrollment.status": StudentField.ENROLLMENT_STATUS,
}

PHONE_KEY_PATTERN = re.compile(r"^(?:student\.)?phone(?:\.(\d+|primary|secondary|alternate))?$")
NAMED_PHONE_SLOTS = {"primary": 0, "secondary": 1, "alternate": 2}

# Fallback order when the selected strategy is no longer satisfiable
STRATEGY_FALLBACKS: dict[MatchStrategy, tuple[MatchStrategy, ...]] = {
    MatchStrategy.EMAIL_OR_PHONE: (
        MatchStrategy.EMAIL_OR_PHONE,
        MatchStrategy.EMAIL,
        MatchStrategy.PHONE,
        MatchStrategy.NAME,
    ),
    MatchStrategy.EMAIL: (MatchStrategy.EMAIL, MatchStrategy.PHONE, MatchStrategy.NAME),
    MatchStrategy.PHONE: (MatchStrategy.PHONE, MatchStrategy.EMAIL, MatchStrategy.NAME),
    MatchStrategy.NAME: (MatchStrategy.NAME,),
}


def validate_required(value: Any) -> bool:
    """Whether a required value is present."""
    return not (value is None or (isinstance(value, str) and value.strip() == ""))


def validate_email_format(value: Any) -> Optional[str]:
    """Validate email format; blank values are allowed."""
    if not value:
        return None

    if not EMAIL_PATTERN.match(str(value)):
        return "Invalid email format"
    return None


def validate_group_status(value: Optional[str]) -> tuple[Optional[GroupStatus], Optional[str]]:
    """Parse a status cell such as `follow up` or `IN_PROGRESS`."""
    if not value:
        return None, None
    normalized = re.sub(r"[\s-]+", "_", value.strip()).upper()
    try:
        return GroupStatus(normalized), None
    except ValueError:
        return None, f"Invalid status: {value}"


def parse_mapping(raw: dict[str, Optional[str]]) -> ColumnMapping:
    """
    Convert a string-keyed mapping into a typed ColumnMapping.

    Blank header values are treated as "not mapped". When two keys name the
    same field (e.g. `name` and `student.name`) the later one wins.

    Raises:
        InvalidFieldPath: A key is not a known import field
    """
    fields: dict[StudentField, str] = {}
    phones: dict[int, str] = {}

    for key, column in raw.items():
        key = (key or "").strip()
        column = column.strip() if isinstance(column, str) else column

        phone_match = PHONE_KEY_PATTERN.match(key)
        if phone_match:
            slot = phone_match.group(1)
            if slot is None:
                index = 0
            elif slot.isdigit():
                index = int(slot)
            else:
                index = NAMED_PHONE_SLOTS[slot]
            if column:
                phones[index] = column
            continue

        field = FIELD_ALIASES.get(key)
        if field is None:
            raise InvalidFieldPath(key)
        if column:
            fields[field] = column

    return ColumnMapping(fields=fields, phones=phones)


def allowed_match_strategies(mapping: ColumnMapping) -> list[MatchStrategy]:
    """Strategies the mapping can satisfy; `name` is always allowed."""
    has_email = mapping.has(StudentField.EMAIL)
    has_phone = mapping.has_phone

    allowed = [MatchStrategy.NAME]
    if has_email:
        allowed.append(MatchStrategy.EMAIL)
    if has_phone:
        allowed.append(MatchStrategy.PHONE)
    if has_email and has_phone:
        allowed.append(MatchStrategy.EMAIL_OR_PHONE)
    return allowed


def resolve_match_strategy(
    mapping: ColumnMapping, previous: MatchStrategy
) -> MatchStrategy:
    """Keep `previous` if still allowed, else fall back to the most specific one left."""
    allowed = set(allowed_match_strategies(mapping))
    for candidate in STRATEGY_FALLBACKS[previous]:
        if candidate in allowed:
            return candidate
    return MatchStrategy.NAME


def _missing_for(strategy: MatchStrategy, mapping: ColumnMapping) -> list[str]:
    missing = []
    if strategy in (MatchStrategy.EMAIL, MatchStrategy.EMAIL_OR_PHONE) and not mapping.has(
        StudentField.EMAIL
    ):
        missing.append("email")
    if strategy in (MatchStrategy.PHONE, MatchStrategy.EMAIL_OR_PHONE) and not mapping.has_phone:
        missing.append("phone")
    return missing


def validate_mapping(
    mapping: ColumnMapping,
    match_by: MatchStrategy,
    headers: Optional[Iterable[str]] = None,
) -> None:
    """
    Check that a mapping can drive a commit.

    Args:
        mapping: Typed column mapping
        match_by: Selected match strategy
        headers: Session headers; when given, every mapped column must be one

    Raises:
        MissingRequiredField: Name is not mapped
        IncompatibleMatchStrategy: Strategy needs an unmapped field
        UnknownColumn: A mapped column is not in the file
    """
    for field in REQUIRED_FIELDS:
        if not mapping.has(field):
            raise MissingRequiredField(field.value)

    missing = _missing_for(match_by, mapping)
    if missing:
        raise IncompatibleMatchStrategy(
            match_by.value,
            missing,
            [s.value for s in allowed_match_strategies(mapping)],
        )

    if headers is not None:
        known = set(headers)
        for key, column in mapping.items():
            if column not in known:
                label = key.key if isinstance(key, PhoneSlot) else key.value
                raise UnknownColumn(label, column)

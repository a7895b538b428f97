"""Resolving import rows to existing students, and projected match stats."""

from __future__ import annotations

import re
import time
from dataclasses import dataclass
from typing import TYPE_CHECKING, Optional
from uuid import UUID

import phonenumbers
from sqlalchemy import func, select
from sqlalchemy.orm import Session

from crm.common.models import Student, StudentPhone
from crm.core.config import settings
from crm.imports.errors import PreviewTimeoutError
from crm.imports.fields import ColumnMapping, ExtractedRow, MatchStrategy
from crm.imports.validators import validate_email_format, validate_required

if TYPE_CHECKING:
    from crm.imports.processors import ImportDestination


def normalize_email(value: Optional[str]) -> Optional[str]:
    if not value:
        return None
    return value.strip().lower() or None


def normalize_phone(value: Optional[str], region: Optional[str] = None) -> Optional[str]:
    """
    Normalize a phone number for equality matching.

    Formatting is stripped down to digits and a leading `+`. When a default
    region is configured, numbers phonenumbers can parse are formatted as
    E.164 so local and international spellings compare equal.
    """
    if not value:
        return None

    cleaned = re.sub(r"[^\d+]", "", str(value).strip())
    digits = cleaned.replace("+", "")
    if not digits:
        return None
    cleaned = f"+{digits}" if cleaned.startswith("+") else digits

    region = settings.phone_default_region if region is None else region
    if region:
        try:
            parsed = phonenumbers.parse(cleaned, region.upper())
            if phonenumbers.is_possible_number(parsed):
                return phonenumbers.format_number(
                    parsed, phonenumbers.PhoneNumberFormat.E164
                )
        except phonenumbers.NumberParseException:
            pass
    return cleaned


class StudentResolver:
    """Looks up live students of one workspace by email, phone or name."""

    def __init__(self, db: Session, workspace_id: UUID):
        self.db = db
        self.workspace_id = workspace_id

    def _live_students(self):
        return select(Student).where(
            Student.workspace_id == self.workspace_id,
            Student.is_deleted.is_(False),
        )

    def by_email(self, email: Optional[str]) -> Optional[Student]:
        email = normalize_email(email)
        if not email:
            return None
        query = (
            self._live_students()
            .where(Student.email == email)
            .order_by(Student.created_at, Student.id)
            .limit(1)
        )
        return self.db.execute(query).scalars().first()

    def by_phone(self, phones: list[str]) -> Optional[Student]:
        for phone in phones:
            normalized = normalize_phone(phone)
            if not normalized:
                continue
            query = (
                self._live_students()
                .join(StudentPhone, StudentPhone.student_id == Student.id)
                .where(
                    StudentPhone.workspace_id == self.workspace_id,
                    StudentPhone.normalized_phone == normalized,
                )
                .order_by(Student.created_at, Student.id)
                .limit(1)
            )
            student = self.db.execute(query).scalars().first()
            if student is not None:
                return student
        return None

    def by_name(self, name: Optional[str]) -> Optional[Student]:
        if not name:
            return None
        query = (
            self._live_students()
            .where(func.lower(Student.name) == name.strip().lower())
            .order_by(Student.created_at, Student.id)
            .limit(1)
        )
        return self.db.execute(query).scalars().first()

    def resolve(self, row: ExtractedRow, strategy: MatchStrategy) -> Optional[Student]:
        """Exact email, normalized phone, or case-insensitive exact name."""
        if strategy == MatchStrategy.EMAIL:
            return self.by_email(row.email)
        if strategy == MatchStrategy.PHONE:
            return self.by_phone(row.phones)
        if strategy == MatchStrategy.EMAIL_OR_PHONE:
            return self.by_email(row.email) or self.by_phone(row.phones)
        return self.by_name(row.name)

    def contact_in_use(self, row: ExtractedRow) -> Optional[Student]:
        """A student already owning the row's email or any of its phones."""
        return self.by_email(row.email) or self.by_phone(row.phones)


@dataclass
class MatchingStats:
    will_match: int = 0
    will_create: int = 0
    will_skip: int = 0

    def to_dict(self) -> dict[str, int]:
        return {
            "will_match": self.will_match,
            "will_create": self.will_create,
            "will_skip": self.will_skip,
        }


def project_matching_stats(
    db: Session,
    workspace_id: UUID,
    destination: "ImportDestination",
    rows: list[dict[str, str]],
    mapping: ColumnMapping,
    match_by: MatchStrategy,
    skip_duplicates: bool = True,
    create_new_students: bool = True,
    deadline: Optional[float] = None,
) -> MatchingStats:
    """
    Estimate how a commit would classify every row. Read-only.

    Skips are rows the commit would not attach: blank name, malformed
    email, students already in the destination (when duplicates are
    skipped) and unmatched rows when creation is off.

    `deadline` is a `time.monotonic()` value; passing it raises
    PreviewTimeoutError once it is reached.
    """
    resolver = StudentResolver(db, workspace_id)
    stats = MatchingStats()

    for row in rows:
        if deadline is not None and time.monotonic() > deadline:
            raise PreviewTimeoutError(settings.import_preview_timeout_seconds)

        extracted = mapping.extract(row)
        if not validate_required(extracted.name) or validate_email_format(extracted.email):
            stats.will_skip += 1
            continue

        student = resolver.resolve(extracted, match_by)
        if student is not None:
            if skip_duplicates and destination.contains(student.id):
                stats.will_skip += 1
            else:
                stats.will_match += 1
            continue

        if not create_new_students:
            stats.will_skip += 1
        elif skip_duplicates and resolver.contact_in_use(extracted) is not None:
            stats.will_skip += 1
        else:
            stats.will_create += 1

    return stats

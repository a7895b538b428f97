"""Destination writers and the per-row commit algorithm."""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import Enum
from typing import Optional
from uuid import UUID

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from crm.common.models import (
    Batch,
    CallList,
    CallListItem,
    Course,
    Enrollment,
    Group,
    Student,
    StudentBatch,
    StudentGroupStatus,
    StudentPhone,
)
from crm.core.errors import NotFoundError
from crm.imports.fields import ColumnMapping, ExtractedRow, GroupStatus, MatchStrategy
from crm.imports.matching import StudentResolver, normalize_email, normalize_phone
from crm.imports.models import DestinationType
from crm.imports.validators import (
    validate_email_format,
    validate_group_status,
    validate_required,
)

logger = logging.getLogger(__name__)


class RowOutcome(str, Enum):
    MATCHED = "MATCHED"
    CREATED = "CREATED"
    DUPLICATE = "DUPLICATE"
    ERROR = "ERROR"


class RowError(Exception):
    """A row cannot be written; recorded on the session, never propagated."""


@dataclass
class RowResult:
    """Result of processing a row."""

    outcome: RowOutcome
    student_id: Optional[UUID] = None
    attached: bool = False
    message: Optional[str] = None


def _find_by_name(db: Session, model, workspace_id: UUID, name: str):
    query = (
        select(model)
        .where(
            model.workspace_id == workspace_id,
            func.lower(model.name) == name.strip().lower(),
        )
        .order_by(model.id)
        .limit(1)
    )
    return db.execute(query).scalars().first()


def ensure_student_batch(db: Session, student_id: UUID, batch_id: UUID) -> None:
    exists = db.execute(
        select(StudentBatch.id).where(
            StudentBatch.student_id == student_id,
            StudentBatch.batch_id == batch_id,
        )
    ).first()
    if exists is None:
        db.add(StudentBatch(student_id=student_id, batch_id=batch_id))
        db.flush()


def ensure_group_membership(
    db: Session,
    student_id: UUID,
    group_id: UUID,
    course_id: Optional[UUID] = None,
    status: Optional[GroupStatus] = None,
) -> None:
    """Upsert the student's group status and an active enrollment.

    `status` only applies when the student joins the group; a status already
    moved along the pipeline is left as it is.
    """
    group_status = db.execute(
        select(StudentGroupStatus).where(
            StudentGroupStatus.student_id == student_id,
            StudentGroupStatus.group_id == group_id,
        )
    ).scalar_one_or_none()
    if group_status is None:
        db.add(
            StudentGroupStatus(
                student_id=student_id,
                group_id=group_id,
                status=(status or GroupStatus.NEW).value,
            )
        )

    enrollment_query = select(Enrollment).where(
        Enrollment.student_id == student_id,
        Enrollment.group_id == group_id,
    )
    if course_id is None:
        enrollment_query = enrollment_query.where(Enrollment.course_id.is_(None))
    else:
        enrollment_query = enrollment_query.where(Enrollment.course_id == course_id)

    enrollment = db.execute(enrollment_query.limit(1)).scalars().first()
    if enrollment is None:
        db.add(
            Enrollment(
                student_id=student_id,
                group_id=group_id,
                course_id=course_id,
                is_active=True,
            )
        )
    else:
        enrollment.is_active = True
    db.flush()


class ImportDestination(ABC):
    """Collection imported students are attached to."""

    def __init__(self, db: Session, workspace_id: UUID):
        self.db = db
        self.workspace_id = workspace_id

    @abstractmethod
    def contains(self, student_id: UUID) -> bool:
        """Whether the student is already a member, checked fresh."""

    @abstractmethod
    def attach(self, student: Student, row: ExtractedRow) -> None:
        """Add the student; every write is an upsert."""

    def course_for(self, row: ExtractedRow) -> Optional[UUID]:
        if not row.course_name:
            return None
        course = _find_by_name(self.db, Course, self.workspace_id, row.course_name)
        if course is None:
            raise RowError(f"Course not found: {row.course_name}")
        return course.id

    def status_for(self, row: ExtractedRow) -> Optional[GroupStatus]:
        status, error = validate_group_status(row.status)
        if error:
            raise RowError(error)
        return status

    def attach_named_group(self, student: Student, row: ExtractedRow) -> None:
        """Enroll into the group named in the row, if any."""
        if not row.group_name:
            return
        group = _find_by_name(self.db, Group, self.workspace_id, row.group_name)
        if group is None:
            raise RowError(f"Group not found: {row.group_name}")
        ensure_group_membership(
            self.db,
            student.id,
            group.id,
            course_id=self.course_for(row),
            status=self.status_for(row),
        )


class CallListDestination(ImportDestination):
    """Call list items, plus the list's group and batch when it has them."""

    def __init__(self, db: Session, workspace_id: UUID, call_list: CallList):
        super().__init__(db, workspace_id)
        self.call_list = call_list
        self.group: Optional[Group] = None
        if call_list.group_id:
            self.group = db.get(Group, call_list.group_id)

        batch_id = (call_list.meta or {}).get("batchId")
        if batch_id:
            self.batch_id: Optional[UUID] = self._meta_batch(batch_id)
        else:
            self.batch_id = self.group.batch_id if self.group else None

    def _meta_batch(self, raw) -> UUID:
        try:
            batch_id = UUID(str(raw))
        except ValueError:
            raise NotFoundError("Batch", str(raw))
        batch = self.db.get(Batch, batch_id)
        if batch is None or batch.workspace_id != self.workspace_id:
            raise NotFoundError("Batch", str(raw))
        return batch_id

    def contains(self, student_id: UUID) -> bool:
        return (
            self.db.execute(
                select(CallListItem.id).where(
                    CallListItem.call_list_id == self.call_list.id,
                    CallListItem.student_id == student_id,
                )
            ).first()
            is not None
        )

    def attach(self, student: Student, row: ExtractedRow) -> None:
        if self.group is not None:
            ensure_group_membership(
                self.db,
                student.id,
                self.group.id,
                course_id=self.course_for(row),
                status=self.status_for(row),
            )
        if self.batch_id:
            ensure_student_batch(self.db, student.id, self.batch_id)
        self.attach_named_group(student, row)

        if not self.contains(student.id):
            self.db.add(
                CallListItem(
                    call_list_id=self.call_list.id,
                    student_id=student.id,
                    state="QUEUED",
                    priority=0,
                )
            )


class GroupDestination(ImportDestination):
    """Group enrollment plus the configured batches."""

    def __init__(
        self,
        db: Session,
        workspace_id: UUID,
        group: Group,
        batch_ids: Optional[list[UUID]] = None,
    ):
        super().__init__(db, workspace_id)
        self.group = group
        self.batch_ids = list(batch_ids or [])

    def contains(self, student_id: UUID) -> bool:
        return (
            self.db.execute(
                select(StudentGroupStatus.id).where(
                    StudentGroupStatus.student_id == student_id,
                    StudentGroupStatus.group_id == self.group.id,
                )
            ).first()
            is not None
        )

    def attach(self, student: Student, row: ExtractedRow) -> None:
        ensure_group_membership(
            self.db,
            student.id,
            self.group.id,
            course_id=self.course_for(row),
            status=self.status_for(row),
        )
        for batch_id in self.batch_ids:
            ensure_student_batch(self.db, student.id, batch_id)
        self.attach_named_group(student, row)


def load_destination(
    db: Session,
    workspace_id: UUID,
    destination_type: str,
    destination_id: UUID,
    batch_ids: Optional[list[UUID]] = None,
) -> ImportDestination:
    """
    Load and check a destination for the workspace.

    Raises:
        NotFoundError: Call list, group or any batch does not exist
    """
    if destination_type == DestinationType.CALL_LIST.value:
        call_list = db.execute(
            select(CallList).where(
                CallList.id == destination_id,
                CallList.workspace_id == workspace_id,
            )
        ).scalar_one_or_none()
        if call_list is None:
            raise NotFoundError("Call list", str(destination_id))
        return CallListDestination(db, workspace_id, call_list)

    group = db.execute(
        select(Group).where(
            Group.id == destination_id,
            Group.workspace_id == workspace_id,
        )
    ).scalar_one_or_none()
    if group is None:
        raise NotFoundError("Group", str(destination_id))

    batch_ids = [UUID(str(b)) for b in (batch_ids or [])]
    if batch_ids:
        found = db.execute(
            select(func.count(Batch.id)).where(
                Batch.id.in_(batch_ids),
                Batch.workspace_id == workspace_id,
                Batch.is_active.is_(True),
            )
        ).scalar_one()
        if found != len(set(batch_ids)):
            raise NotFoundError("Batch", ", ".join(str(b) for b in batch_ids))

    return GroupDestination(db, workspace_id, group, batch_ids)


class StudentRowProcessor:
    """Resolves, creates and attaches one row at a time.

    Writes for a row run inside a savepoint; a row-level failure rolls back
    only that row. Storage faults other than integrity violations propagate.
    """

    def __init__(
        self,
        db: Session,
        workspace_id: UUID,
        destination: ImportDestination,
        mapping: ColumnMapping,
        match_by: MatchStrategy,
        create_new_students: bool,
        skip_duplicates: bool,
    ):
        self.db = db
        self.workspace_id = workspace_id
        self.destination = destination
        self.mapping = mapping
        self.match_by = match_by
        self.create_new_students = create_new_students
        self.skip_duplicates = skip_duplicates
        self.resolver = StudentResolver(db, workspace_id)

    def process_row(self, row: dict[str, str]) -> RowResult:
        extracted = self.mapping.extract(row)

        if not validate_required(extracted.name):
            return RowResult(RowOutcome.ERROR, message="Missing name")

        email_error = validate_email_format(extracted.email)
        if email_error:
            return RowResult(RowOutcome.ERROR, message=email_error)

        student = self.resolver.resolve(extracted, self.match_by)

        if student is not None:
            already_member = self.destination.contains(student.id)
            if already_member and self.skip_duplicates:
                return RowResult(RowOutcome.DUPLICATE, student_id=student.id)
            return self._write(
                RowOutcome.MATCHED,
                lambda: self._update_student(student, extracted),
                extracted,
                attached=not already_member,
            )

        if not self.create_new_students:
            return RowResult(
                RowOutcome.ERROR, message="No match found and creation disabled"
            )

        if self.skip_duplicates:
            owner = self.resolver.contact_in_use(extracted)
            if owner is not None:
                return RowResult(RowOutcome.DUPLICATE, student_id=owner.id)

        return self._write(
            RowOutcome.CREATED,
            lambda: self._create_student(extracted),
            extracted,
            attached=True,
        )

    def _write(self, outcome, load_student, extracted: ExtractedRow, attached: bool) -> RowResult:
        try:
            with self.db.begin_nested():
                student = load_student()
                # New students get their id on flush
                self.db.flush()
                self.destination.attach(student, extracted)
                self.db.flush()
                student_id = student.id
        except RowError as e:
            return RowResult(RowOutcome.ERROR, message=str(e))
        except IntegrityError as e:
            logger.info(f"Integrity error while importing row: {e.orig}")
            return RowResult(RowOutcome.ERROR, message="Conflicts with existing data")
        return RowResult(outcome, student_id=student_id, attached=attached)

    def _add_phones(self, student: Student, phones: list[str], has_primary: bool) -> None:
        known = {p.normalized_phone for p in student.phones}
        for phone in phones:
            normalized = normalize_phone(phone)
            if not normalized or normalized in known:
                continue
            student.phones.append(
                StudentPhone(
                    workspace_id=self.workspace_id,
                    phone=phone,
                    normalized_phone=normalized,
                    is_primary=not has_primary,
                )
            )
            known.add(normalized)
            has_primary = True

    def _create_student(self, row: ExtractedRow) -> Student:
        student = Student(
            workspace_id=self.workspace_id,
            name=row.name,
            email=normalize_email(row.email),
            discord_id=row.discord_id,
            tags=list(row.tags),
            is_deleted=False,
        )
        self.db.add(student)
        self._add_phones(student, row.phones, has_primary=False)
        return student

    def _update_student(self, student: Student, row: ExtractedRow) -> Student:
        """Fill in missing details without overwriting what is stored."""
        if not student.email and row.email:
            student.email = normalize_email(row.email)
        if not student.discord_id and row.discord_id:
            student.discord_id = row.discord_id
        if row.tags:
            merged = list(student.tags or [])
            merged.extend(t for t in row.tags if t not in merged)
            if merged != list(student.tags or []):
                student.tags = merged
        self._add_phones(
            student,
            row.phones,
            has_primary=any(p.is_primary for p in student.phones),
        )
        return student

"""Models package - re-exports all models.

Models are organized into:
- base: Base class, metadata, naming convention
- students: students, phones, groups, batches, courses, enrollments
- call_lists: call lists and their items
"""

from __future__ import annotations

from crm.common.models.base import (
    Base,
    metadata,
    NAMING_CONVENTION,
    utcnow,
)

from crm.common.models.students import (
    Student,
    StudentPhone,
    Batch,
    Group,
    Course,
    StudentBatch,
    Enrollment,
    StudentGroupStatus,
)

from crm.common.models.call_lists import (
    CallList,
    CallListItem,
)

__all__ = [
    # Base
    "Base",
    "metadata",
    "NAMING_CONVENTION",
    "utcnow",
    # Students
    "Student",
    "StudentPhone",
    "Batch",
    "Group",
    "Course",
    "StudentBatch",
    "Enrollment",
    "StudentGroupStatus",
    # Call lists
    "CallList",
    "CallListItem",
]

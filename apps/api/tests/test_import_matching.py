"""Tests for student resolution and projected match stats."""

from __future__ import annotations

import time
from uuid import UUID

import pytest

from crm.imports.errors import PreviewTimeoutError
from crm.imports.fields import MatchStrategy
from crm.imports.matching import (
    StudentResolver,
    normalize_email,
    normalize_phone,
    project_matching_stats,
)
from crm.imports.processors import load_destination
from crm.imports.validators import parse_mapping


class TestNormalization:
    """Test contact normalization."""

    def test_normalize_email(self):
        assert normalize_email("  Ada@Example.COM ") == "ada@example.com"
        assert normalize_email("") is None
        assert normalize_email(None) is None

    def test_normalize_phone_digits_only(self):
        assert normalize_phone("(017) 123-4567", region="") == "0171234567"
        assert normalize_phone("+353 87 123 4567", region="") == "+353871234567"
        assert normalize_phone("n/a", region="") is None
        assert normalize_phone(None) is None

    def test_normalize_phone_with_region(self):
        local = normalize_phone("087 123 4567", region="IE")
        international = normalize_phone("+353 87 123 4567", region="IE")

        assert local == international == "+353871234567"

    def test_impossible_number_keeps_digits(self):
        assert normalize_phone("12", region="IE") == "12"


class TestStudentResolver:
    """Test student lookup by strategy."""

    def test_by_email_is_case_insensitive(self, db, workspace_id, make_student):
        ada = make_student("Ada", email="ada@x.com")
        resolver = StudentResolver(db, UUID(workspace_id))

        assert resolver.by_email("ADA@x.com").id == ada.id
        assert resolver.by_email("nobody@x.com") is None

    def test_by_phone_uses_normalized_value(self, db, workspace_id, make_student):
        bob = make_student("Bob", phones=["555-0100"])
        resolver = StudentResolver(db, UUID(workspace_id))

        assert resolver.by_phone(["nope", "(555) 0100"]).id == bob.id

    def test_by_name(self, db, workspace_id, make_student):
        cara = make_student("Cara Doe")
        resolver = StudentResolver(db, UUID(workspace_id))

        assert resolver.by_name(" cara doe ").id == cara.id
        assert resolver.by_name("Cara") is None

    def test_deleted_students_are_ignored(self, db, workspace_id, make_student):
        ada = make_student("Ada", email="ada@x.com")
        ada.is_deleted = True
        db.commit()

        assert StudentResolver(db, UUID(workspace_id)).by_email("ada@x.com") is None

    def test_email_or_phone_tries_email_first(self, db, workspace_id, make_student):
        by_mail = make_student("Ada", email="ada@x.com")
        make_student("Other", phones=["555"])
        mapping = parse_mapping({"name": "Name", "email": "Email", "phone": "Phone"})
        row = mapping.extract({"Name": "Ada", "Email": "ada@x.com", "Phone": "555"})

        resolver = StudentResolver(db, UUID(workspace_id))

        assert resolver.resolve(row, MatchStrategy.EMAIL_OR_PHONE).id == by_mail.id


class TestProjectMatchingStats:
    """Test the read-only preview projection."""

    @pytest.fixture
    def rows(self):
        return [
            {"Name": "Ada", "Email": "ada@x.com"},
            {"Name": "", "Email": "blank@x.com"},
            {"Name": "Cara", "Email": "bad-email"},
            {"Name": "Dan", "Email": "dan@x.com"},
        ]

    def test_counts(self, db, workspace_id, call_list, make_student, rows):
        make_student("Ada", email="ada@x.com")
        destination = load_destination(db, UUID(workspace_id), "call_list", call_list.id)
        mapping = parse_mapping({"name": "Name", "email": "Email"})

        stats = project_matching_stats(
            db, UUID(workspace_id), destination, rows, mapping, MatchStrategy.EMAIL
        )

        assert stats.to_dict() == {"will_match": 1, "will_create": 1, "will_skip": 2}

    def test_creation_disabled_skips_unmatched(self, db, workspace_id, call_list, rows):
        destination = load_destination(db, UUID(workspace_id), "call_list", call_list.id)
        mapping = parse_mapping({"name": "Name", "email": "Email"})

        stats = project_matching_stats(
            db,
            UUID(workspace_id),
            destination,
            rows,
            mapping,
            MatchStrategy.EMAIL,
            create_new_students=False,
        )

        assert stats.will_create == 0
        assert stats.will_skip == 4

    def test_is_read_only(self, db, workspace_id, call_list, rows):
        from crm.common.models import Student

        destination = load_destination(db, UUID(workspace_id), "call_list", call_list.id)
        mapping = parse_mapping({"name": "Name", "email": "Email"})
        project_matching_stats(
            db, UUID(workspace_id), destination, rows, mapping, MatchStrategy.EMAIL
        )

        assert db.query(Student).count() == 0

    def test_deadline_exceeded(self, db, workspace_id, call_list, rows):
        destination = load_destination(db, UUID(workspace_id), "call_list", call_list.id)
        mapping = parse_mapping({"name": "Name", "email": "Email"})

        with pytest.raises(PreviewTimeoutError) as exc_info:
            project_matching_stats(
                db,
                UUID(workspace_id),
                destination,
                rows,
                mapping,
                MatchStrategy.EMAIL,
                deadline=time.monotonic() - 1,
            )

        assert exc_info.value.status_code == 408

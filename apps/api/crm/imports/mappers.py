"""Column mapping auto-detection for student imports."""

from __future__ import annotations

from typing import Any

from fuzzywuzzy import fuzz

from crm.imports.fields import PhoneSlot, StudentField

# Field mapping definitions. `patterns` drive the deterministic suggestion
# (case-insensitive substring, most specific first); `variations` feed the
# fuzzy confidence scores shown next to each header.
FIELD_MAPPINGS: dict[str, dict[str, Any]] = {
    StudentField.EMAIL.value: {
        "patterns": ["email address", "e-mail", "email", "mail"],
        "variations": ["email", "e-mail", "email_address", "email address", "mail"],
        "required": False,
    },
    StudentField.NAME.value: {
        "patterns": ["student name", "student_name", "full name", "full_name", "name"],
        "variations": [
            "name",
            "full name",
            "full_name",
            "student name",
            "student_name",
            "first name",
        ],
        "required": True,
    },
    "phone": {
        "patterns": [
            "phone number",
            "phone_number",
            "mobile number",
            "phone",
            "mobile",
            "whatsapp",
            "contact",
            "cell",
        ],
        "variations": [
            "phone",
            "telephone",
            "phone_number",
            "phone number",
            "mobile",
            "mobile number",
            "whatsapp",
            "contact",
            "cell",
        ],
        "required": False,
    },
    StudentField.TAGS.value: {
        "variations": ["tags", "tag", "labels", "label"],
        "required": False,
    },
    StudentField.DISCORD_ID.value: {
        "variations": ["discord", "discord id", "discord_id", "discord username"],
        "required": False,
    },
    StudentField.GROUP_NAME.value: {
        "variations": ["group", "group name", "group_name", "class"],
        "required": False,
    },
    StudentField.COURSE_NAME.value: {
        "variations": ["course", "course name", "course_name", "program"],
        "required": False,
    },
    StudentField.ENROLLMENT_STATUS.value: {
        "variations": ["status", "stage", "lead status"],
        "required": False,
    },
}

# Fields the header heuristic fills, in the order they claim headers
SUGGESTION_ORDER = (StudentField.EMAIL.value, StudentField.NAME.value, "phone")


def normalize_column_name(name: str) -> str:
    """Normalize column name for matching."""
    return name.lower().strip().replace("_", " ").replace("-", " ").replace(".", " ")


def calculate_similarity(source: str, target: str) -> int:
    """Calculate similarity score between source and target column names."""
    return fuzz.ratio(normalize_column_name(source), normalize_column_name(target))


def _first_match(patterns: list[str], headers: list[str], used: set[str]) -> str | None:
    for pattern in patterns:
        for header in headers:
            if header not in used and pattern in header.lower():
                return header
    return None


def suggest_column_mapping(headers: list[str]) -> dict[str, str]:
    """
    Suggest a column mapping from header names.

    Each field takes the first header containing its highest-priority
    pattern; a header is claimed by at most one field. Remaining phone-like
    headers become extra phone slots (`phone.1`, `phone.2`, ...).

    Args:
        headers: Distinct header names in file order

    Returns:
        Mapping of field key to header, only for fields that were found
    """
    suggestions: dict[str, str] = {}
    used: set[str] = set()

    for key in SUGGESTION_ORDER:
        header = _first_match(FIELD_MAPPINGS[key]["patterns"], headers, used)
        if header is not None:
            suggestions[key] = header
            used.add(header)

    if "phone" in suggestions:
        phone_patterns = FIELD_MAPPINGS["phone"]["patterns"]
        slot = 1
        for header in headers:
            if header in used:
                continue
            if any(pattern in header.lower() for pattern in phone_patterns):
                suggestions[PhoneSlot(slot).key] = header
                used.add(header)
                slot += 1

    return suggestions


def suggest_mappings(
    source_columns: list[str], threshold: int = 50
) -> dict[str, dict[str, Any]]:
    """
    Score every header against every logical field.

    Scores are for ranking options in a mapping UI only; they never change
    the deterministic suggestion.

    Args:
        source_columns: List of source column names
        threshold: Minimum score for a candidate to be listed

    Returns:
        Dictionary with `best_match` and `all_candidates` for each column
    """
    suggestions: dict[str, dict[str, Any]] = {}

    for source_col in source_columns:
        candidates = []
        for target_field, config in FIELD_MAPPINGS.items():
            max_score = max(
                calculate_similarity(source_col, variation)
                for variation in config["variations"]
            )
            if max_score >= threshold:
                candidates.append(
                    {
                        "target_field": target_field,
                        "score": max_score,
                        "required": config["required"],
                    }
                )

        candidates.sort(key=lambda x: x["score"], reverse=True)
        suggestions[source_col] = {
            "best_match": candidates[0] if candidates else None,
            "all_candidates": candidates[:3],
        }

    return suggestions

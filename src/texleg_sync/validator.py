"""Minimum-completeness checks for parsed bill records."""

from __future__ import annotations

from datetime import date, datetime

from .errors import ValidationError
from .models import ActionEntry, CandidateRecord, CommitteeReferral

_REQUIRED_TEXT = ("bill_id", "bill_type", "description", "status")
_SEQUENCE_FIELDS = ("authors", "coauthors", "sponsors", "cosponsors", "subjects")


def validate(candidate: CandidateRecord, *, strict: bool = False) -> list[str]:
    """Check a candidate record before it is stored.

    Returns a list of violations; empty means the record may be upserted.
    If ``strict`` is True, raises ``ValidationError`` on the first violation.

    Required:
        - ``bill_id``, ``bill_type``, ``description``, ``status``: non-empty strings
        - ``bill_number``: positive integer
        - role lists, ``subjects``, ``committees``, ``actions``: lists (possibly empty)
        - ``last_action_date`` / ``last_update``: a date/datetime or ``None``
    """
    violations: list[str] = []
    label = getattr(candidate, "bill_id", None) or "?"

    def _fail(msg: str) -> None:
        if strict:
            raise ValidationError(msg)
        violations.append(msg)

    for name in _REQUIRED_TEXT:
        val = getattr(candidate, name, None)
        if not val or not isinstance(val, str) or not val.strip():
            _fail(f"Bill {label}: missing required field '{name}'")

    number = getattr(candidate, "bill_number", None)
    if not isinstance(number, int) or isinstance(number, bool) or number < 1:
        _fail(f"Bill {label}: bill_number must be a positive integer, got {number!r}")

    for name in _SEQUENCE_FIELDS:
        val = getattr(candidate, name, None)
        if not isinstance(val, list) or not all(isinstance(v, str) for v in val):
            _fail(f"Bill {label}: '{name}' must be a list of strings")

    committees = getattr(candidate, "committees", None)
    if not isinstance(committees, list) or not all(
        isinstance(c, CommitteeReferral) for c in committees
    ):
        _fail(f"Bill {label}: 'committees' must be a list of committee referrals")

    actions = getattr(candidate, "actions", None)
    if not isinstance(actions, list) or not all(isinstance(a, ActionEntry) for a in actions):
        _fail(f"Bill {label}: 'actions' must be a list of action entries")

    last_action_date = getattr(candidate, "last_action_date", None)
    if last_action_date is not None and not isinstance(last_action_date, date):
        _fail(f"Bill {label}: last_action_date is not a date: {last_action_date!r}")

    last_update = getattr(candidate, "last_update", None)
    if last_update is not None and not isinstance(last_update, datetime):
        _fail(f"Bill {label}: last_update is not a timestamp: {last_update!r}")

    return violations

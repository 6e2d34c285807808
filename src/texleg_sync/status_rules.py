"""Ordered heuristic that derives a bill's current status from its history.

The rule order and the plain substring matching are load-bearing: stored
bills and downstream consumers were classified with exactly this list, so a
"smarter" rule silently reclassifies history.  Known false positives are kept
on purpose and pinned in ``tests/test_status_rules.py``:

- any action containing ``effective`` counts as ``Signed``, including
  "Effective immediately" on a bill that was later vetoed;
- ``Passed Both Chambers`` needs ``passed``, ``senate`` and ``house`` in the
  *same* action string, so "Reported from Senate committee; passed House"
  style text also qualifies;
- two differently worded referrals ("Referred to Appropriations" vs
  "Referred to the Committee on State Affairs") both map to ``In Committee``.
"""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass

from .models import ActionEntry, CommitteeReferral

DEFAULT_STATUS = "Filed"


@dataclass(frozen=True)
class StatusRule:
    """Match if any phrase in *any_of* occurs, and every phrase in *all_of* occurs."""

    status: str
    any_of: tuple[str, ...] = ()
    all_of: tuple[str, ...] = ()

    def matches(self, text: str) -> bool:
        tl = text.lower()
        if self.any_of and not any(p in tl for p in self.any_of):
            return False
        return all(p in tl for p in self.all_of)


# Evaluated against each action, newest action first; first hit wins.
ACTION_RULES: tuple[StatusRule, ...] = (
    StatusRule("Signed", any_of=("signed by the governor", "effective")),
    StatusRule("Sent to Governor", any_of=("sent to the governor",)),
    StatusRule("Enrolled", any_of=("enrolled",)),
    StatusRule("Passed Both Chambers", all_of=("passed", "senate", "house")),
    StatusRule("Passed", any_of=("passed to engrossment",)),
    StatusRule("Passed", any_of=("passed",)),
    StatusRule("Vetoed", any_of=("vetoed",)),
    StatusRule("Dead", any_of=("withdrawn", "died")),
)

# Committee referral status (exact, case-insensitive) -> bill status.
COMMITTEE_RULES: tuple[tuple[str, str], ...] = (
    ("in committee", "In Committee"),
    ("reported", "Reported"),
)

REFERRAL_RULE = StatusRule("In Committee", any_of=("referred to",))


def classify_action(description: str) -> str | None:
    """Status implied by a single action string, or ``None`` if no rule fires."""
    for rule in ACTION_RULES:
        if rule.matches(description):
            return rule.status
    return None


def derive_status(
    actions: Sequence[ActionEntry],
    committees: Sequence[CommitteeReferral],
) -> str:
    """Derive the current status of a bill.

    1. No actions at all → ``Filed``.
    2. Newest action first, the first action that any ``ACTION_RULES`` entry
       matches decides.
    3. Otherwise the first committee referral whose status is exactly
       "in committee" or "reported" decides.
    4. Otherwise any "referred to" action means ``In Committee``.
    5. Otherwise ``Filed``.
    """
    if not actions:
        return DEFAULT_STATUS

    for action in reversed(actions):
        status = classify_action(action.description)
        if status is not None:
            return status

    for committee in committees:
        committee_status = committee.status.lower()
        for phrase, status in COMMITTEE_RULES:
            if committee_status == phrase:
                return status

    if any(REFERRAL_RULE.matches(a.description) for a in actions):
        return REFERRAL_RULE.status

    return DEFAULT_STATUS

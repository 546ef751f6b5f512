"""
Normalization of AI-extracted connect card fields.

Maps the many checkbox labels churches print on their cards to a small set of
standard options. Anything that cannot be mapped confidently is kept as
written so staff can correct it during review.
"""

import re
from typing import List, Optional, Sequence, Tuple

FIRST_VISIT = "First Visit"
SECOND_VISIT = "Second Visit"
REGULAR_ATTENDEE = "Regular attendee"

# (standard label, substrings that map to it); first match wins
INTEREST_PATTERNS: Sequence[Tuple[str, Tuple[str, ...]]] = (
    ("Volunteering", ("volunteer", "serve", "serving", "get involved", "help out")),
    ("Small Groups", ("small group", "life group", "connect group", "community group", "bible study")),
    ("Youth Ministry", ("youth", "student", "teen")),
    ("Kids Ministry", ("kid", "child", "nursery")),
    ("Worship", ("worship", "music", "band", "choir")),
    ("Missions", ("mission", "outreach")),
)


def normalize_visit_status(visit_status: Optional[str]) -> Optional[str]:
    if not visit_status:
        return None

    normalized = visit_status.lower().strip()

    if (
        "first" in normalized
        or "i'm new" in normalized
        or "im new" in normalized
        or "new here" in normalized
        or "new guest" in normalized
        or ("guest" in normalized and "return" not in normalized)
    ):
        return FIRST_VISIT

    if "second" in normalized or "2nd" in normalized:
        return SECOND_VISIT

    if any(word in normalized for word in ("regular", "member", "returning", "frequent", "attend")):
        return REGULAR_ATTENDEE

    return visit_status


def normalize_interests(interests: Optional[Sequence[str]]) -> List[str]:
    """Map interest labels to standard options, de-duplicated, order preserved."""
    if not interests:
        return []

    normalized: List[str] = []
    for interest in interests:
        if not isinstance(interest, str) or not interest.strip():
            continue
        lower = interest.lower().strip()
        label = next(
            (standard for standard, needles in INTEREST_PATTERNS if any(n in lower for n in needles)),
            interest.strip(),
        )
        if label not in normalized:
            normalized.append(label)
    return normalized


def normalize_keywords(keywords: Optional[Sequence[str]]) -> List[str]:
    if not keywords:
        return []
    return [k.lower().strip() for k in keywords if isinstance(k, str) and k.strip()]


def format_phone_number(phone: Optional[str]) -> Optional[str]:
    """Format US numbers as (555) 123-4567; anything else is returned trimmed."""
    if not phone or not phone.strip():
        return None

    digits = re.sub(r"\D", "", phone)
    if len(digits) == 11 and digits.startswith("1"):
        digits = digits[1:]
    if len(digits) == 10:
        return f"({digits[:3]}) {digits[3:6]}-{digits[6:]}"
    return phone.strip()

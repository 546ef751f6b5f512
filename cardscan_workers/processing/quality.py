"""
Data quality checks for extracted connect card data.

Flags the most common vision extraction mistakes so the review queue can
surface them:
- name missing or too short
- 9-digit or incomplete phone numbers, all-same-digit numbers
- email without "@"
"""

import re
from dataclasses import asdict, dataclass, field
from typing import Any, Dict, List


@dataclass
class ValidationIssue:
    field: str
    message: str
    severity: str = "error"  # error, warning


@dataclass
class QualityReport:
    issues: List[ValidationIssue] = field(default_factory=list)

    @property
    def needs_review(self) -> bool:
        return any(issue.severity == "error" for issue in self.issues)

    @property
    def is_valid(self) -> bool:
        return not self.issues

    def to_json(self) -> List[Dict[str, str]]:
        return [asdict(issue) for issue in self.issues]


def validate_card_data(data: Dict[str, Any]) -> QualityReport:
    report = QualityReport()

    name = str(data.get("name") or "").strip()
    if len(name) < 2:
        report.issues.append(ValidationIssue("name", "Name is missing or too short"))

    phone = str(data.get("phone") or "").strip()
    if phone:
        digits = re.sub(r"\D", "", phone)
        if len(digits) == 9:
            report.issues.append(ValidationIssue("phone", "Phone number has only 9 digits (expected 10)"))
        elif 0 < len(digits) < 9:
            report.issues.append(ValidationIssue("phone", f"Phone number has only {len(digits)} digits"))
        elif len(digits) >= 10 and len(set(digits)) == 1:
            report.issues.append(ValidationIssue("phone", "Phone number is all the same digit"))
        elif not digits:
            report.issues.append(ValidationIssue("phone", "Phone number has no digits"))
    else:
        report.issues.append(ValidationIssue("phone", "Phone number is missing"))

    email = str(data.get("email") or "").strip()
    if email:
        if "@" not in email:
            report.issues.append(ValidationIssue("email", "Email is missing @ symbol"))
    else:
        report.issues.append(ValidationIssue("email", "Email is missing"))

    return report

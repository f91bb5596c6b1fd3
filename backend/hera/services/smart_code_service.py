# Overview: Service-layer parser/validator for governed smart codes.

"""
Smart Code Governance

A smart code classifies the business meaning of an entity, relationship,
transaction or line:

    HERA.<INDUSTRY>.<SEGMENT>[.<SEGMENT> ...].v<version>

- prefix:   "HERA"
- industry: 3-15 uppercase alphanumerics
- segments: 3-8 of them, each 2-30 uppercase alphanumerics/underscores
- version:  lowercase "v" followed by an integer

Codes failing this exact shape are rejected; there is no partial leniency.
Every call site goes through parse_smart_code so the structured value
(industry, segments, version) is derived in one place.
"""

from __future__ import annotations

import re
from dataclasses import dataclass

from ..validation import GovernanceError


SMART_CODE_PREFIX = "HERA"

SMART_CODE_PATTERN = re.compile(
    r"HERA\.(?P<industry>[A-Z0-9]{3,15})"
    r"(?P<segments>(?:\.[A-Z0-9_]{2,30}){3,8})"
    r"\.v(?P<version>[0-9]+)"
)


@dataclass(frozen=True)
class SmartCode:
    """Structured smart code."""
    industry: str
    segments: tuple[str, ...]
    version: int
    raw: str
    prefix: str = SMART_CODE_PREFIX

    @property
    def module(self) -> str:
        return self.segments[0]

    @property
    def family(self) -> str:
        """Everything but the version, e.g. HERA.SALON.SALE.TXN.RETAIL."""
        return ".".join((self.prefix, self.industry) + self.segments)

    @property
    def code(self) -> str:
        """The code exactly as the caller wrote it."""
        return self.raw

    def has_segment(self, segment: str) -> bool:
        return segment in self.segments

    def to_dict(self) -> dict:
        return {
            "prefix": self.prefix,
            "industry": self.industry,
            "segments": list(self.segments),
            "version": self.version,
        }


def parse_smart_code(code: object) -> SmartCode | None:
    """Return the structured smart code, or None when the code is not governed."""
    if not isinstance(code, str):
        return None
    match = SMART_CODE_PATTERN.fullmatch(code)
    if not match:
        return None
    return SmartCode(
        industry=match.group("industry"),
        segments=tuple(match.group("segments").lstrip(".").split(".")),
        version=int(match.group("version")),
        raw=code,
    )


def _rejection_reason(code: object) -> str:
    if not isinstance(code, str) or not code:
        return "smart_code is required"
    parts = code.split(".")
    if parts[0] != SMART_CODE_PREFIX:
        return f"must start with {SMART_CODE_PREFIX}"
    if not re.fullmatch(r"v[0-9]+", parts[-1]):
        return "must end with a lowercase version marker (v1, v2, ...)"
    middle = parts[1:-1]
    if not middle or not re.fullmatch(r"[A-Z0-9]{3,15}", middle[0]):
        return "industry segment must be 3-15 uppercase alphanumerics"
    if not 3 <= len(middle) - 1 <= 8:
        return "must have 3-8 segments after the industry"
    return "segments must be 2-30 uppercase alphanumerics/underscores"


def validate_smart_code(code: object) -> dict:
    """
    Contract: validate(code) -> {valid, components?}.

    Invalid codes carry a human-readable reason instead of components.
    """
    parsed = parse_smart_code(code)
    if parsed is None:
        return {"valid": False, "reason": _rejection_reason(code)}
    return {"valid": True, "components": parsed.to_dict()}


def is_valid_smart_code(code: object) -> bool:
    return parse_smart_code(code) is not None


def require_smart_code(code: object, *, field: str = "smart_code") -> SmartCode:
    """
    Parse or fail fast.

    Raises GovernanceError(INVALID_SMART_CODE); callers run this before
    adding any row so a bad code aborts the entire write.
    """
    parsed = parse_smart_code(code)
    if parsed is None:
        raise GovernanceError(
            f"Invalid smart code for {field}: {code!r}",
            details={"field": field, "smart_code": code, "reason": _rejection_reason(code)},
        )
    return parsed

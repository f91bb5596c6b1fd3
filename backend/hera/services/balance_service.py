"""
Balance rules applied to transaction lines before anything is persisted.

Three rules, chosen per transaction_type:

- Ledger: GL lines (line_type GL, a line_data.side, or a .GL. smart code)
  need side DR/CR and non-negative amounts; per currency, DR total equals
  CR total.
- Header total: a given header total matches the sum of business line
  amounts. With no business lines it matches the GL debit total, or zero
  when there are no GL lines either.
- Payment: when payment lines exist, |sum(business)| equals |sum(payment)|,
  with an empty business side counting as zero.

Journal types additionally require every line to be a GL line and at least
two lines. All comparisons use the configured tolerance (0.01 by default).
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal

from flask import current_app

from ..validation import BalanceError, ValidationError
from .smart_code_service import parse_smart_code


JOURNAL_TYPES = {"JOURNAL_ENTRY", "GL_JOURNAL"}
GL_LINE_TYPES = {"GL"}
PAYMENT_LINE_TYPES = {"PAYMENT", "TENDER"}
SIDES = ("DR", "CR")

_ZERO = Decimal("0")


@dataclass(frozen=True)
class LineView:
    """The fields a balance rule looks at, already coerced."""
    line_number: int
    line_type: str
    line_amount: Decimal
    smart_code: str
    line_data: dict


@dataclass(frozen=True)
class RuleSet:
    ledger: bool = True
    header_total: bool = True
    payment: bool = True
    journal: bool = False


_DEFAULT_RULES = RuleSet()
_RULES: dict[str, RuleSet] = {t: RuleSet(journal=True) for t in JOURNAL_TYPES}


def register_rules(transaction_type: str, rules: RuleSet) -> None:
    _RULES[transaction_type] = rules


def rules_for(transaction_type: str) -> RuleSet:
    return _RULES.get(transaction_type, _DEFAULT_RULES)


def balance_tolerance() -> Decimal:
    return Decimal(str(current_app.config.get("BALANCE_TOLERANCE", "0.01")))


def is_gl_line(line: LineView) -> bool:
    if line.line_type in GL_LINE_TYPES or "side" in line.line_data:
        return True
    parsed = parse_smart_code(line.smart_code)
    return parsed is not None and parsed.has_segment("GL")


def is_payment_line(line: LineView) -> bool:
    if line.line_type in PAYMENT_LINE_TYPES:
        return True
    parsed = parse_smart_code(line.smart_code)
    return parsed is not None and parsed.has_segment("PAYMENT")


def _check_ledger(gl_lines: list[LineView], currency: str | None, tolerance: Decimal) -> None:
    totals: dict[str, dict[str, Decimal]] = {}
    for line in gl_lines:
        side = str(line.line_data.get("side", "")).upper()
        if side not in SIDES:
            raise ValidationError(
                f"GL line {line.line_number} needs line_data.side DR or CR",
                details={"line_number": line.line_number},
            )
        if line.line_amount < _ZERO:
            raise ValidationError(
                f"GL line {line.line_number} amount must be non-negative",
                details={"line_number": line.line_number},
            )
        line_currency = line.line_data.get("currency") or currency or "DEFAULT"
        bucket = totals.setdefault(line_currency, {"DR": _ZERO, "CR": _ZERO})
        bucket[side] += line.line_amount

    for line_currency, bucket in totals.items():
        if abs(bucket["DR"] - bucket["CR"]) > tolerance:
            raise BalanceError(
                f"Ledger lines do not balance for {line_currency}: DR {bucket['DR']} != CR {bucket['CR']}",
                details={
                    "rule": "ledger",
                    "currency": line_currency,
                    "debits": float(bucket["DR"]),
                    "credits": float(bucket["CR"]),
                },
            )


def check_balance(
    transaction_type: str,
    lines: list[LineView],
    total_amount: Decimal | None,
    currency: str | None = None,
) -> Decimal | None:
    """
    Apply the rule set for transaction_type.

    Returns the header total to persist: the given total, or the sum of
    business lines when the header omitted it.
    """
    rules = rules_for(transaction_type)
    tolerance = balance_tolerance()

    gl_lines = [l for l in lines if is_gl_line(l)]
    payment_lines = [l for l in lines if l not in gl_lines and is_payment_line(l)]
    business_lines = [l for l in lines if l not in gl_lines and l not in payment_lines]

    if rules.journal:
        if len(lines) < 2:
            raise BalanceError(
                f"{transaction_type} needs at least two lines",
                details={"rule": "journal", "line_count": len(lines)},
            )
        non_gl = [l.line_number for l in lines if l not in gl_lines]
        if non_gl:
            raise BalanceError(
                f"{transaction_type} lines must all be GL lines",
                details={"rule": "journal", "line_numbers": non_gl},
            )

    if rules.ledger and gl_lines:
        _check_ledger(gl_lines, currency, tolerance)

    business_total = sum((l.line_amount for l in business_lines), _ZERO)

    if rules.header_total:
        if business_lines:
            line_total = business_total
        else:
            line_total = sum(
                (l.line_amount for l in gl_lines if str(l.line_data.get("side", "")).upper() == "DR"),
                _ZERO,
            )
        if total_amount is None:
            if business_lines:
                total_amount = business_total
        elif abs(total_amount - line_total) > tolerance:
            raise BalanceError(
                f"Header total {total_amount} does not match line total {line_total}",
                details={
                    "rule": "header_total",
                    "total_amount": float(total_amount),
                    "line_total": float(line_total),
                },
            )

    if rules.payment and payment_lines:
        payment_total = sum((l.line_amount for l in payment_lines), _ZERO)
        if abs(abs(business_total) - abs(payment_total)) > tolerance:
            raise BalanceError(
                f"Payments {payment_total} do not cover line total {business_total}",
                details={
                    "rule": "payment",
                    "line_total": float(business_total),
                    "payment_total": float(payment_total),
                },
            )

    return total_amount

"""
Transaction Validators

Hard invariants (symbol present, amount > 0, price >= 0) produce
error-severity issues and exclude the row. Soft invariants (future
timestamp) produce warnings and keep the row.
"""

from datetime import datetime, timezone
from typing import List, Optional

from parsers.transaction import Severity, Transaction, ValidationIssue


def validate_transaction(
    transaction: Transaction,
    row: int,
    now: Optional[datetime] = None
) -> List[ValidationIssue]:
    """Check one mapped transaction; ``row`` is the 1-based data row number."""
    issues: List[ValidationIssue] = []
    now = now or datetime.now(timezone.utc)

    if not transaction.symbol:
        issues.append(ValidationIssue(
            row=row, field='symbol', value=transaction.symbol,
            message="Symbol is required",
        ))

    if transaction.amount <= 0:
        issues.append(ValidationIssue(
            row=row, field='amount', value=str(transaction.amount),
            message="Amount must be greater than 0",
        ))

    if transaction.price < 0:
        issues.append(ValidationIssue(
            row=row, field='price', value=str(transaction.price),
            message="Price cannot be negative",
        ))

    if transaction.timestamp > now:
        issues.append(ValidationIssue(
            row=row, field='timestamp', value=transaction.timestamp.isoformat(),
            message="Transaction date is in the future",
            severity=Severity.WARNING,
        ))

    return issues


def has_errors(issues: List[ValidationIssue]) -> bool:
    return any(issue.severity == Severity.ERROR for issue in issues)

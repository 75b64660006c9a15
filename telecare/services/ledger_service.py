# telecare/services/ledger_service.py
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Dict, List, Optional, Type

import structlog
from sqlalchemy import func, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from .. import crud, models
from ..compliance_logger import ComplianceLogger
from ..config import Settings
from ..core.timeutils import as_utc, month_key, utcnow
from ..errors import InsufficientBalance, InsufficientFundsError, ValidationError
from .unit_of_work import atomic

logger = structlog.get_logger(__name__)


@dataclass
class MonthlyAllocation:
    account_id: int
    plan_id: str
    period: str
    allocated: bool
    credits: int
    balance: int
    entry_id: Optional[int] = None


def _month_bounds(now: datetime):
    now = as_utc(now)
    start = datetime(now.year, now.month, 1, tzinfo=timezone.utc)
    if now.month == 12:
        end = datetime(now.year + 1, 1, 1, tzinfo=timezone.utc)
    else:
        end = datetime(now.year, now.month + 1, 1, tzinfo=timezone.utc)
    return start, end


class LedgerService:
    """Append-only credit ledger with the cached account balance kept in step.

    ``append_entry`` only records a movement. ``apply_movement`` is the one
    path that changes ``Account.credits``: it updates the balance with a
    guarded UPDATE and appends the matching entry in the same transaction.
    Neither method commits; the calling operation owns the transaction.
    """

    def __init__(self, db: Session, settings: Settings):
        self.db = db
        self.settings = settings
        self.audit = ComplianceLogger(db)

    def append_entry(
        self,
        account_id: int,
        amount: int,
        type: models.TransactionType,
        description: Optional[str] = None,
        package_id: Optional[str] = None,
        created_at: Optional[datetime] = None,
        **references,
    ) -> models.LedgerEntry:
        entry = models.LedgerEntry(
            account_id=account_id,
            amount=amount,
            type=type,
            description=description,
            package_id=package_id,
            created_at=created_at or utcnow(),
            **references,
        )
        self.db.add(entry)
        return entry

    def apply_movement(
        self,
        account: models.Account,
        amount: int,
        type: models.TransactionType,
        description: Optional[str] = None,
        package_id: Optional[str] = None,
        insufficient: Type[InsufficientFundsError] = InsufficientBalance,
        **references,
    ) -> models.LedgerEntry:
        if not isinstance(amount, int) or isinstance(amount, bool) or amount == 0:
            raise ValidationError("Credit movements must be a non-zero whole number of credits", {"amount": amount})

        stmt = update(models.Account).where(models.Account.id == account.id)
        if amount < 0:
            # Guard in the statement itself so concurrent debits cannot overdraw
            stmt = stmt.where(models.Account.credits >= -amount)
        stmt = stmt.values(credits=models.Account.credits + amount).execution_options(synchronize_session=False)
        result = self.db.execute(stmt)
        self.db.expire(account, ["credits"])
        if result.rowcount != 1:
            raise insufficient(account.id, account.credits, -amount)

        entry = self.append_entry(account.id, amount, type, description, package_id, **references)
        self.db.flush()
        logger.debug("ledger_movement_applied", account_id=account.id, amount=amount, type=type.value, entry_id=entry.id)
        return entry

    # ---- reads ----

    def ledger_sum(self, account_id: int) -> int:
        total = (
            self.db.query(func.coalesce(func.sum(models.LedgerEntry.amount), 0))
            .filter(models.LedgerEntry.account_id == account_id)
            .scalar()
        )
        return int(total)

    def balance_of(self, account_id: int) -> int:
        return crud.get_account_or_404(self.db, account_id).credits

    def find_consistency_issues(self) -> List[Dict]:
        """Accounts whose cached balance differs from the sum of their entries."""
        sums = (
            self.db.query(
                models.LedgerEntry.account_id.label("account_id"),
                func.sum(models.LedgerEntry.amount).label("ledger_total"),
            )
            .group_by(models.LedgerEntry.account_id)
            .subquery()
        )
        rows = (
            self.db.query(models.Account, func.coalesce(sums.c.ledger_total, 0))
            .outerjoin(sums, models.Account.id == sums.c.account_id)
            .filter(models.Account.credits != func.coalesce(sums.c.ledger_total, 0))
            .all()
        )
        return [
            {
                "account_id": account.id,
                "cached_balance": account.credits,
                "ledger_total": int(total),
                "issue": f"Cached balance {account.credits} does not match ledger total {int(total)}.",
            }
            for account, total in rows
        ]

    # ---- operations ----

    def allocate_monthly_credits(self, account_id: int, plan_id: str, now: Optional[datetime] = None) -> MonthlyAllocation:
        """Grant the plan's monthly credits at most once per account, plan and month.

        A plan change mid-month grants the new plan's credits straight away,
        since no entry for that plan exists yet this month.
        """
        now = as_utc(now) if now else utcnow()
        period = month_key(now)
        if plan_id not in self.settings.plan_credits:
            raise ValidationError(f"Unknown plan '{plan_id}'", {"plan_id": plan_id})
        credits = self.settings.plan_credits[plan_id]

        account = crud.get_account_or_404(self.db, account_id)
        result = MonthlyAllocation(account_id, plan_id, period, False, 0, account.credits)
        if account.role != models.AccountRole.PATIENT or credits == 0:
            return result

        month_start, month_end = _month_bounds(now)
        already_allocated = (
            self.db.query(models.LedgerEntry.id)
            .filter(
                models.LedgerEntry.account_id == account.id,
                models.LedgerEntry.type == models.TransactionType.CREDIT_PURCHASE,
                models.LedgerEntry.package_id == plan_id,
                models.LedgerEntry.created_at >= month_start,
                models.LedgerEntry.created_at < month_end,
            )
            .first()
        )
        if already_allocated:
            logger.info("monthly_allocation_skipped", account_id=account.id, plan_id=plan_id, period=period)
            return result

        try:
            with atomic(self.db, "allocate_monthly_credits", passthrough_integrity=True, account_id=account.id, plan_id=plan_id):
                entry = self.apply_movement(
                    account,
                    credits,
                    models.TransactionType.CREDIT_PURCHASE,
                    description=f"Monthly {plan_id} plan credits",
                    package_id=plan_id,
                    allocation_period=period,
                    created_at=now,
                )
                self.audit.log_event(
                    actor_id=None,
                    action=models.AuditAction.CREDIT_ALLOCATION,
                    category="CREDITS",
                    resource_type="Account",
                    resource_id=account.id,
                    details=f"Allocated {credits} credits for plan {plan_id} ({period})",
                )
        except IntegrityError:
            # A concurrent call granted this month's allocation first
            self.db.rollback()
            logger.info("monthly_allocation_raced", account_id=account.id, plan_id=plan_id, period=period)
            self.db.refresh(account)
            result.balance = account.credits
            return result

        logger.info("monthly_credits_allocated", account_id=account.id, plan_id=plan_id, credits=credits, period=period)
        return MonthlyAllocation(account.id, plan_id, period, True, credits, account.credits, entry.id)

    def record_purchase(
        self,
        account_id: int,
        credits: int,
        package_id: Optional[str],
        external_reference: str,
        actor_id: Optional[int] = None,
    ) -> models.LedgerEntry:
        """Record credits bought through the payment gateway; idempotent per reference."""
        if credits <= 0:
            raise ValidationError("Purchased credits must be positive", {"credits": credits})
        if not external_reference:
            raise ValidationError("external_reference is required")

        existing = (
            self.db.query(models.LedgerEntry)
            .filter(models.LedgerEntry.external_reference == external_reference)
            .first()
        )
        if existing:
            return existing

        account = crud.get_account_or_404(self.db, account_id)
        try:
            with atomic(self.db, "record_purchase", passthrough_integrity=True, account_id=account.id, external_reference=external_reference):
                entry = self.apply_movement(
                    account,
                    credits,
                    models.TransactionType.CREDIT_PURCHASE,
                    description=f"Purchased {credits} credits ({package_id or 'custom'} package) ({external_reference})",
                    package_id=package_id,
                    external_reference=external_reference,
                )
                self.audit.log_event(
                    actor_id=actor_id,
                    action=models.AuditAction.CREDIT_PURCHASE,
                    category="CREDITS",
                    resource_type="Account",
                    resource_id=account.id,
                    details=f"Recorded purchase of {credits} credits ({external_reference})",
                )
        except IntegrityError:
            self.db.rollback()
            existing = (
                self.db.query(models.LedgerEntry)
                .filter(models.LedgerEntry.external_reference == external_reference)
                .first()
            )
            if existing is None:
                raise
            return existing
        return entry

    def adjust_credits(self, admin_id: int, account_id: int, amount: int, description: Optional[str] = None) -> models.LedgerEntry:
        account = crud.get_account_or_404(self.db, account_id)
        with atomic(self.db, "adjust_credits", account_id=account.id, amount=amount):
            entry = self.apply_movement(
                account,
                amount,
                models.TransactionType.ADMIN_ADJUSTMENT,
                description=description or f"Admin adjustment of {amount} credits",
            )
            self.audit.log_event(
                actor_id=admin_id,
                action=models.AuditAction.CREDIT_ADJUSTMENT,
                category="CREDITS",
                resource_type="Account",
                resource_id=account.id,
                details=f"Adjusted balance by {amount} credits",
            )
        return entry

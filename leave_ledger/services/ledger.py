"""
Balance Ledger

Tracks per-employee, per-year consumption of each leave pool and exposes the
atomic reservation used by the approval orchestrator.

Architecture:
- ``apply_reservation`` performs the read-modify-write inside the caller's
  transaction. The orchestrator composes it with the request status flip.
- ``reserve`` wraps it in ``run_atomically`` for standalone use.
- Concurrent reservations on the same (employee, year) serialize through
  ``SELECT ... FOR UPDATE`` where the backend supports it, and through the
  row's version counter everywhere else.
"""
from dataclasses import dataclass, field
from typing import Dict, Optional, Union

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError

from leave_ledger.core.config import settings
from leave_ledger.core.exceptions import InvalidArgumentError
from leave_ledger.models.leave_balance import CATEGORY_POOLS, LeaveBalance, LeaveCategory, LeavePool
from leave_ledger.services.base import BaseService
from leave_ledger.services.transactions import WriteConflict, run_atomically


@dataclass
class Reservation:
    """Outcome of one committed reservation: days debited per pool."""
    employee_id: int
    year: int
    category: LeaveCategory
    days: int
    debits: Dict[LeavePool, int] = field(default_factory=dict)

    @property
    def paid_days(self) -> int:
        primary, overflow = CATEGORY_POOLS[self.category]
        return self.debits.get(primary, 0) if overflow is not None else 0

    @property
    def overflow_days(self) -> int:
        _, overflow = CATEGORY_POOLS[self.category]
        return self.debits.get(overflow, 0) if overflow is not None else 0

    def as_dict(self) -> Dict[str, int]:
        return {pool.value: days for pool, days in self.debits.items()}


def plan_debits(balance: LeaveBalance, category: LeaveCategory, days: int) -> Dict[LeavePool, int]:
    """
    Split ``days`` across the category's pools.

    Split categories drain the paid pool first and send the shortfall to the
    unpaid pool, which has no ceiling. Single-pool categories debit directly.
    """
    primary, overflow = CATEGORY_POOLS[category]
    if overflow is None:
        return {primary: days}

    paid_remaining = max(balance.remaining(primary), 0)
    if paid_remaining >= days:
        return {primary: days}

    debits = {overflow: days - paid_remaining}
    if paid_remaining:
        debits[primary] = paid_remaining
    return debits


def default_entitlements() -> Dict[str, int]:
    return {
        "sick_paid_total": settings.ledger.sick_paid_days,
        "sick_unpaid_total": settings.ledger.sick_unpaid_days,
        "casual_paid_total": settings.ledger.casual_paid_days,
    }


class BalanceLedger(BaseService):

    # --- reads -----------------------------------------------------------

    def get_balance(self, employee_id: int, year: int) -> LeaveBalance:
        """
        Read-only snapshot of committed counters.

        An absent row is reported as a fresh, unsaved balance with default
        entitlements; the read never creates it.
        """
        balance = self.db.execute(
            select(LeaveBalance).where(
                LeaveBalance.employee_id == employee_id,
                LeaveBalance.year == year,
            )
        ).scalar_one_or_none()
        if balance is None:
            return LeaveBalance(employee_id=employee_id, year=year, **default_entitlements())
        return balance

    def _load_for_update(self, employee_id: int, year: int) -> Optional[LeaveBalance]:
        return self.db.execute(
            select(LeaveBalance)
            .where(LeaveBalance.employee_id == employee_id, LeaveBalance.year == year)
            .with_for_update()
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()

    def _load_or_create(self, employee_id: int, year: int) -> LeaveBalance:
        balance = self._load_for_update(employee_id, year)
        if balance is not None:
            return balance

        balance = LeaveBalance(employee_id=employee_id, year=year, **default_entitlements())
        self.db.add(balance)
        try:
            self.db.flush()
        except IntegrityError as exc:
            # Another writer created the row first; replay against its row
            raise WriteConflict(f"balance row {employee_id}/{year} created concurrently") from exc
        self.log_info("leave_balance_created", employee_id=employee_id, year=year)
        return balance

    # --- writes ----------------------------------------------------------

    def apply_reservation(
        self,
        employee_id: int,
        year: int,
        category: Union[LeaveCategory, str],
        days: int,
    ) -> Reservation:
        """Debit pools inside the current transaction. Does not commit."""
        category = coerce_category(category)
        if days is None or days <= 0:
            raise InvalidArgumentError("Reserved days must be positive", field="days")

        balance = self._load_or_create(employee_id, year)
        debits = plan_debits(balance, category, days)
        for pool, amount in debits.items():
            balance.consume(pool, amount)
        self.db.flush()

        return Reservation(
            employee_id=employee_id,
            year=year,
            category=category,
            days=days,
            debits=debits,
        )

    def reserve(
        self,
        employee_id: int,
        year: int,
        category: Union[LeaveCategory, str],
        days: int,
    ) -> Reservation:
        """Commit a reservation as its own atomic unit."""
        reservation = run_atomically(
            self.db,
            lambda db: self.apply_reservation(employee_id, year, category, days),
            description="leave reservation",
        )
        self.log_info(
            "leave_reserved",
            employee_id=employee_id,
            year=year,
            category=reservation.category.value,
            debits=reservation.as_dict(),
        )
        return reservation

    def seed_entitlements(self, employee_id: int, year: int, totals: Dict[str, int]) -> LeaveBalance:
        """
        Upsert pre-seeded pool totals. Used counters are never touched.

        ``totals`` is keyed by pool name (``sick_paid``) or column name
        (``sick_paid_total``).
        """
        columns = {}
        for key, value in totals.items():
            if value is None:
                continue
            pool_name = key[:-len("_total")] if key.endswith("_total") else key
            try:
                pool = LeavePool(pool_name)
            except ValueError:
                raise InvalidArgumentError(f"Unknown leave pool '{key}'", field=key)
            if value < 0:
                raise InvalidArgumentError("Entitlement totals cannot be negative", field=key)
            columns[f"{pool.value}_total"] = value

        def _seed(db):
            balance = self._load_or_create(employee_id, year)
            for column, value in columns.items():
                setattr(balance, column, value)
            db.flush()
            return balance

        balance = run_atomically(self.db, _seed, description="entitlement seeding")
        self.log_info("leave_entitlements_seeded", employee_id=employee_id, year=year, totals=columns)
        return balance


def coerce_category(category: Union[LeaveCategory, str]) -> LeaveCategory:
    try:
        return LeaveCategory(category)
    except ValueError:
        raise InvalidArgumentError(f"Unknown leave category '{category}'", field="leave_type")

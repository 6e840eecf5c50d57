"""
Leave balance ledger row.

One row per (employee, calendar year). Every pool is tracked by a total and
a used counter. Used counters only grow, and only through BalanceLedger.
"""
import enum

from sqlalchemy import Column, Integer, DateTime, UniqueConstraint
from sqlalchemy.sql import func

from leave_ledger.database import Base


class LeaveCategory(str, enum.Enum):
    SICK = "sick_leave"
    CASUAL = "casual_leave"
    PUBLIC_HOLIDAY = "public_holiday"
    BEREAVEMENT = "bereavement_leave"
    UNPAID = "unpaid_leave"


class LeavePool(str, enum.Enum):
    """Column prefix of each pool on LeaveBalance."""
    SICK_PAID = "sick_paid"
    SICK_UNPAID = "sick_unpaid"
    CASUAL_PAID = "casual_paid"
    CASUAL_UNPAID = "casual_unpaid"
    BEREAVEMENT = "bereavement"
    PUBLIC_HOLIDAY = "public_holiday"
    UNPAID = "unpaid"


# category -> (primary pool, overflow pool). Overflow pools are uncapped.
CATEGORY_POOLS = {
    LeaveCategory.SICK: (LeavePool.SICK_PAID, LeavePool.SICK_UNPAID),
    LeaveCategory.CASUAL: (LeavePool.CASUAL_PAID, LeavePool.CASUAL_UNPAID),
    LeaveCategory.BEREAVEMENT: (LeavePool.BEREAVEMENT, None),
    LeaveCategory.PUBLIC_HOLIDAY: (LeavePool.PUBLIC_HOLIDAY, None),
    LeaveCategory.UNPAID: (LeavePool.UNPAID, None),
}


class LeaveBalance(Base):
    __tablename__ = "leave_balances"
    __table_args__ = (
        UniqueConstraint("employee_id", "year", name="uq_leave_balance_employee_year"),
    )

    id = Column(Integer, primary_key=True, index=True)
    employee_id = Column(Integer, index=True, nullable=False)
    year = Column(Integer, nullable=False)

    sick_paid_total = Column(Integer, nullable=False, default=0)
    sick_paid_used = Column(Integer, nullable=False, default=0)
    sick_unpaid_total = Column(Integer, nullable=False, default=0)
    sick_unpaid_used = Column(Integer, nullable=False, default=0)

    casual_paid_total = Column(Integer, nullable=False, default=0)
    casual_paid_used = Column(Integer, nullable=False, default=0)
    casual_unpaid_total = Column(Integer, nullable=False, default=0)
    casual_unpaid_used = Column(Integer, nullable=False, default=0)

    bereavement_total = Column(Integer, nullable=False, default=0)
    bereavement_used = Column(Integer, nullable=False, default=0)

    public_holiday_total = Column(Integer, nullable=False, default=0)
    public_holiday_used = Column(Integer, nullable=False, default=0)

    unpaid_total = Column(Integer, nullable=False, default=0)
    unpaid_used = Column(Integer, nullable=False, default=0)

    # Optimistic concurrency token; a stale write raises StaleDataError
    version_id = Column(Integer, nullable=False)

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())

    __mapper_args__ = {"version_id_col": version_id}

    def __init__(self, **kwargs):
        # Column defaults only apply at flush; snapshots of unsaved rows need zeros now
        for pool in LeavePool:
            kwargs.setdefault(f"{pool.value}_total", 0)
            kwargs.setdefault(f"{pool.value}_used", 0)
        super().__init__(**kwargs)

    def __repr__(self):
        return f"<LeaveBalance employee={self.employee_id} year={self.year}>"

    def total(self, pool: LeavePool) -> int:
        return getattr(self, f"{pool.value}_total")

    def used(self, pool: LeavePool) -> int:
        return getattr(self, f"{pool.value}_used")

    def remaining(self, pool: LeavePool) -> int:
        return self.total(pool) - self.used(pool)

    def consume(self, pool: LeavePool, days: int) -> None:
        if days < 0:
            raise ValueError("used counters never decrease")
        setattr(self, f"{pool.value}_used", self.used(pool) + days)

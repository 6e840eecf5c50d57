"""
Contention tests: many threads, one (employee, year) balance row.

Each worker owns its own session on a shared file-backed SQLite database.
A barrier releases them together so the read-modify-write cycles overlap.
"""
import pytest
from concurrent.futures import ThreadPoolExecutor
from datetime import timedelta
from threading import Barrier

from leave_ledger.core.exceptions import AlreadyTerminalError
from leave_ledger.models.leave_balance import LeaveBalance, LeaveCategory, LeavePool
from leave_ledger.models.leave_request import LeaveRequest, LeaveStatus
from leave_ledger.services.ledger import BalanceLedger

from tests.conftest import DIRECTOR_ID, EMPLOYEE_ID, LEAVE_START, MANAGER_ID

YEAR = 2026
WORKERS = 8


def _run_parallel(count, work):
    barrier = Barrier(count)

    def _worker(index):
        barrier.wait()
        return work(index)

    with ThreadPoolExecutor(max_workers=count) as pool:
        return list(pool.map(_worker, range(count)))


def _committed_balance(session_factory):
    with session_factory() as session:
        rows = session.query(LeaveBalance).filter_by(employee_id=EMPLOYEE_ID, year=YEAR).all()
        assert len(rows) == 1
        return {pool: (rows[0].total(pool), rows[0].used(pool)) for pool in LeavePool}


@pytest.mark.parametrize("paid_slots, days", [(3, 2), (5, 1)])
def test_parallel_reservations_never_overdraw_paid_pool(session_factory, paid_slots, days):
    with session_factory() as session:
        BalanceLedger(session).seed_entitlements(EMPLOYEE_ID, YEAR, {"sick_paid": paid_slots * days})

    def reserve(_):
        with session_factory() as session:
            return BalanceLedger(session).reserve(EMPLOYEE_ID, YEAR, LeaveCategory.SICK, days)

    reservations = _run_parallel(WORKERS, reserve)

    paid = [r for r in reservations if r.debits == {LeavePool.SICK_PAID: days}]
    unpaid = [r for r in reservations if r.debits == {LeavePool.SICK_UNPAID: days}]
    assert len(paid) == paid_slots
    assert len(unpaid) == WORKERS - paid_slots

    balance = _committed_balance(session_factory)
    paid_total, paid_used = balance[LeavePool.SICK_PAID]
    assert paid_used == paid_total == paid_slots * days
    assert balance[LeavePool.SICK_UNPAID][1] == (WORKERS - paid_slots) * days

def test_parallel_first_reservations_create_exactly_one_row(session_factory):
    def reserve(_):
        with session_factory() as session:
            return BalanceLedger(session).reserve(EMPLOYEE_ID, YEAR, LeaveCategory.CASUAL, 1)

    reservations = _run_parallel(WORKERS, reserve)

    assert len(reservations) == WORKERS
    balance = _committed_balance(session_factory)
    paid_total, paid_used = balance[LeavePool.CASUAL_PAID]
    assert paid_used == paid_total == 5
    assert balance[LeavePool.CASUAL_UNPAID][1] == WORKERS - 5

def test_parallel_decisions_on_one_request_debit_once(orchestrator, make_orchestrator, session_factory):
    request = orchestrator.submit(
        employee_id=EMPLOYEE_ID,
        requester_id=EMPLOYEE_ID,
        category=LeaveCategory.CASUAL,
        start_date=LEAVE_START,
        end_date=LEAVE_START + timedelta(days=1),
    )
    workers = [make_orchestrator() for _ in range(4)]
    approvers = [MANAGER_ID, DIRECTOR_ID, MANAGER_ID, DIRECTOR_ID]

    def decide(index):
        try:
            workers[index].decide(request.id, approvers[index], "approve")
            return "approved"
        except AlreadyTerminalError:
            return "terminal"

    outcomes = _run_parallel(len(workers), decide)

    assert outcomes.count("approved") == 1
    assert outcomes.count("terminal") == len(workers) - 1
    with session_factory() as session:
        assert session.get(LeaveRequest, request.id).status == LeaveStatus.APPROVED.value
    assert _committed_balance(session_factory)[LeavePool.CASUAL_PAID][1] == 2

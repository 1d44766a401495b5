"""Transaction boundary tests: rollback and transient retry"""

from decimal import Decimal

import pytest
from sqlalchemy.exc import IntegrityError, OperationalError

from coop_credit.domain.exceptions import TransientStorageError
from coop_credit.infrastructure.database.models import Member
from coop_credit.services.unit_of_work import UnitOfWork


def add_member(db, email="ana@coop.test"):
    db.add(Member(name="Ana", email=email, credit_limit=Decimal("10.00"), credit_balance=Decimal("0.00")))
    db.flush()


def test_error_rolls_back_everything(session_factory):
    uow = UnitOfWork(session_factory)

    def failing(db):
        add_member(db)
        raise RuntimeError("fail after write")

    with pytest.raises(RuntimeError):
        uow.run(failing)

    assert uow.read(lambda db: db.query(Member).count()) == 0


def test_integrity_errors_are_not_retried(session_factory):
    uow = UnitOfWork(session_factory)
    uow.run(add_member)
    calls = []

    def duplicate(db):
        calls.append(1)
        add_member(db)

    with pytest.raises(IntegrityError):
        uow.run(duplicate)
    assert len(calls) == 1


def test_transient_error_retried_then_succeeds(session_factory):
    uow = UnitOfWork(session_factory, max_retries=3)
    attempts = []

    def flaky(db):
        attempts.append(1)
        if len(attempts) < 3:
            raise OperationalError("SELECT 1", {}, Exception("database is locked"))
        add_member(db)
        return "ok"

    assert uow.run(flaky) == "ok"
    assert len(attempts) == 3
    assert uow.read(lambda db: db.query(Member).count()) == 1


def test_transient_error_surfaces_after_retries(session_factory):
    uow = UnitOfWork(session_factory, max_retries=2)

    def always_locked(db):
        raise OperationalError("SELECT 1", {}, Exception("database is locked"))

    with pytest.raises(TransientStorageError):
        uow.run(always_locked)

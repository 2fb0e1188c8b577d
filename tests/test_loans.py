"""
Unit tests for the loan lifecycle
"""
import asyncio
import pytest
from decimal import Decimal
from sqlalchemy import select, func, text
from sqlalchemy.exc import InvalidRequestError, StatementError
from sqlalchemy.ext.asyncio import create_async_engine, async_sessionmaker
from sqlalchemy.pool import NullPool

from app.core.database import Base
from app.core.exceptions import InvalidTransition, NotFound, ValidationError
from app.core.security import Principal
from app.modules.loans.models import (
    Loan, LoanStatus, LoanStatusType, can_transition, normalize_status
)
from app.modules.loans.services import LoanService
from app.modules.transactions.models import TransactionType
from app.modules.transactions.services import LedgerService
from app.modules.users.models import UserRole
from app.modules.users.services import UserService


async def _loan_transactions(db_session, loan_id: int):
    return await LedgerService(db_session).get_loan_transactions(loan_id)


class TestStatusVocabulary:

    @pytest.mark.unit
    @pytest.mark.parametrize("raw,expected", [
        ("pending", LoanStatus.PENDING),
        ("PENDING", LoanStatus.PENDING),
        ("pending_approval", LoanStatus.PENDING),
        ("PendingApproval", LoanStatus.PENDING),
        ("approved", LoanStatus.APPROVED),
        ("APPROVED_PENDING_DISBURSE", LoanStatus.APPROVED),
        ("active", LoanStatus.ACTIVE),
        ("disbursed", LoanStatus.ACTIVE),
        ("REJECTED", LoanStatus.REJECTED),
        ("paid", None),
        (None, None),
    ])
    def test_normalize_status(self, raw, expected):
        assert normalize_status(raw) == expected

    @pytest.mark.unit
    def test_transition_table(self):
        assert can_transition(LoanStatus.PENDING, LoanStatus.APPROVED)
        assert can_transition(LoanStatus.PENDING, LoanStatus.REJECTED)
        assert can_transition(LoanStatus.APPROVED, LoanStatus.ACTIVE)
        assert not can_transition(LoanStatus.PENDING, LoanStatus.ACTIVE)
        assert not can_transition(LoanStatus.APPROVED, LoanStatus.APPROVED)
        assert not can_transition(LoanStatus.APPROVED, LoanStatus.REJECTED)
        for target in LoanStatus:
            assert not can_transition(LoanStatus.ACTIVE, target)
            assert not can_transition(LoanStatus.REJECTED, target)

    @pytest.mark.unit
    def test_column_type_reads_legacy_spellings(self):
        column_type = LoanStatusType()
        assert column_type.process_result_value("APPROVED_PENDING_DISBURSE", None) == LoanStatus.APPROVED
        assert column_type.process_result_value("paid", None) == "paid"

    @pytest.mark.unit
    def test_column_type_refuses_to_write_variants(self):
        column_type = LoanStatusType()
        assert column_type.process_bind_param(LoanStatus.ACTIVE, None) == "active"
        with pytest.raises(ValueError):
            column_type.process_bind_param("REJECTED", None)

    @pytest.mark.integration
    async def test_non_canonical_status_never_persisted(self, db_session, borrower):
        db_session.add(Loan(
            user_id=borrower.id,
            amount_requested=Decimal("100"),
            purpose="Test",
            repayment_term_months=3,
            status="APPROVED_PENDING_DISBURSE"
        ))
        with pytest.raises(StatementError):
            await db_session.flush()


class TestLoanQuote:

    @pytest.mark.unit
    def test_flat_interest(self):
        quote = LoanService.calculate_quote(Decimal("10000"), 12, monthly_rate=Decimal("0.20"))

        assert quote.interest_amount == 24000.0
        assert quote.total_repayable == 34000.0
        assert quote.monthly_payment == 2833.33
        assert quote.monthly_interest_rate == 0.2

    @pytest.mark.unit
    def test_zero_rate(self):
        quote = LoanService.calculate_quote(Decimal("1200"), 12, monthly_rate=0)
        assert quote.interest_amount == 0.0
        assert quote.monthly_payment == 100.0

    @pytest.mark.unit
    def test_rejects_non_positive_term(self):
        with pytest.raises(ValidationError):
            LoanService.calculate_quote(Decimal("1000"), 0)


class TestLoanApplication:

    @pytest.mark.integration
    async def test_apply_creates_pending_loan(self, db_session, borrower):
        service = LoanService(db_session)

        loan = await service.apply_loan(borrower.id, Decimal("5000.00"), "  Tricycle repair ", 6)

        assert loan.id is not None
        assert loan.status == LoanStatus.PENDING
        assert loan.amount_requested == Decimal("5000.00")
        assert loan.purpose == "Tricycle repair"
        assert loan.repayment_term_months == 6
        assert loan.created_at is not None

    @pytest.mark.integration
    @pytest.mark.parametrize("amount,purpose,term", [
        (None, "Stock", 6),
        (Decimal("1000"), None, 6),
        (Decimal("1000"), "Stock", None),
        (Decimal("0"), "Stock", 6),
        (Decimal("-5"), "Stock", 6),
        (Decimal("1000"), "Stock", 0),
        (Decimal("1000"), "Stock", 2.5),
        (Decimal("1000"), "   ", 6),
    ])
    async def test_apply_validation(self, db_session, borrower, amount, purpose, term):
        service = LoanService(db_session)

        with pytest.raises(ValidationError):
            await service.apply_loan(borrower.id, amount, purpose, term)

        count = await db_session.execute(select(func.count(Loan.id)))
        assert count.scalar() == 0

    @pytest.mark.integration
    async def test_list_mine_newest_first_and_scoped(self, db_session, borrower, other_borrower):
        service = LoanService(db_session)
        first = await service.apply_loan(borrower.id, Decimal("1000"), "First", 3)
        await service.apply_loan(other_borrower.id, Decimal("2000"), "Not mine", 3)
        second = await service.apply_loan(borrower.id, Decimal("1500"), "Second", 3)

        loans = await service.get_user_loans(borrower.id)

        assert [loan.id for loan in loans] == [second.id, first.id]

    @pytest.mark.integration
    async def test_get_loan_for_hides_other_borrowers_loans(self, db_session, pending_loan, other_borrower, admin_user):
        service = LoanService(db_session)

        with pytest.raises(NotFound):
            await service.get_loan_for(Principal(id=other_borrower.id, role=UserRole.BORROWER), pending_loan.id)

        loan = await service.get_loan_for(Principal(id=admin_user.id, role=UserRole.ADMIN), pending_loan.id)
        assert loan.id == pending_loan.id


class TestLoanDecisions:

    @pytest.mark.integration
    async def test_approve_pending(self, db_session, pending_loan):
        service = LoanService(db_session)

        loan = await service.approve_loan(pending_loan.id, note="Good repayment history")

        assert loan.status == LoanStatus.APPROVED
        assert loan.decision_note == "Good repayment history"
        assert await _loan_transactions(db_session, loan.id) == []

    @pytest.mark.integration
    async def test_reject_pending(self, db_session, pending_loan):
        service = LoanService(db_session)

        loan = await service.reject_loan(pending_loan.id)

        assert loan.status == LoanStatus.REJECTED

    @pytest.mark.integration
    async def test_reapproval_fails(self, db_session, approved_loan):
        loan_id = approved_loan.id
        service = LoanService(db_session)

        with pytest.raises(InvalidTransition):
            await service.approve_loan(loan_id)

        assert (await service.get_loan(loan_id)).status == LoanStatus.APPROVED

    @pytest.mark.integration
    async def test_rejected_loan_is_terminal(self, db_session, pending_loan):
        loan_id = pending_loan.id
        service = LoanService(db_session)
        await service.reject_loan(loan_id)

        for action in (service.approve_loan, service.reject_loan, service.disburse_loan):
            with pytest.raises(InvalidTransition):
                await action(loan_id)

        assert (await service.get_loan(loan_id)).status == LoanStatus.REJECTED
        assert await _loan_transactions(db_session, loan_id) == []

    @pytest.mark.integration
    async def test_approved_loan_cannot_be_rejected(self, db_session, approved_loan):
        loan_id = approved_loan.id
        service = LoanService(db_session)

        with pytest.raises(InvalidTransition):
            await service.reject_loan(loan_id, note="Changed my mind")

        loan = await service.get_loan(loan_id)
        assert loan.status == LoanStatus.APPROVED
        assert loan.decision_note is None

    @pytest.mark.integration
    @pytest.mark.parametrize("action", ["approve_loan", "reject_loan", "disburse_loan"])
    async def test_unknown_loan(self, db_session, action):
        service = LoanService(db_session)
        with pytest.raises(NotFound):
            await getattr(service, action)(9999)

    @pytest.mark.integration
    async def test_pending_list_joins_borrower_name(self, db_session, borrower, other_borrower):
        service = LoanService(db_session)
        older = await service.apply_loan(borrower.id, Decimal("1000"), "Older", 3)
        decided = await service.apply_loan(other_borrower.id, Decimal("2000"), "Decided", 3)
        newer = await service.apply_loan(other_borrower.id, Decimal("3000"), "Newer", 3)
        await service.approve_loan(decided.id)

        pending = await service.get_pending_loans()

        assert [loan.id for loan in pending] == [newer.id, older.id]
        assert pending[0].full_name == "Maria Santos"
        assert pending[1].full_name == "Juan Dela Cruz"

        approved = await service.get_approved_loans()
        assert [loan.id for loan in approved] == [decided.id]

    @pytest.mark.integration
    @pytest.mark.parametrize("stored,action,expected", [
        ("pending_approval", "approve_loan", LoanStatus.APPROVED),
        ("PendingApproval", "reject_loan", LoanStatus.REJECTED),
        ("APPROVED_PENDING_DISBURSE", "disburse_loan", LoanStatus.ACTIVE),
    ])
    async def test_legacy_spelling_still_transitions(self, db_session, borrower, stored, action, expected):
        borrower_id = borrower.id
        # Rows written before the status check existed
        await db_session.execute(text("PRAGMA ignore_check_constraints = ON"))
        result = await db_session.execute(
            text(
                "INSERT INTO loans (user_id, amount_requested, purpose, repayment_term_months, status, created_at, updated_at) "
                "VALUES (:user_id, 800, 'Legacy', 4, :status, CURRENT_TIMESTAMP, CURRENT_TIMESTAMP)"
            ),
            {"user_id": borrower_id, "status": stored}
        )
        loan_id = result.lastrowid
        await db_session.commit()
        service = LoanService(db_session)

        result = await getattr(service, action)(loan_id)

        loan = result[0] if isinstance(result, tuple) else result
        assert loan.status == expected
        raw = await db_session.execute(text("SELECT status FROM loans WHERE id = :id"), {"id": loan_id})
        assert raw.scalar() == expected.value

    @pytest.mark.integration
    async def test_relationships_are_never_implicitly_loaded(self, pending_loan):
        with pytest.raises(InvalidRequestError):
            pending_loan.user


class TestDisbursement:

    @pytest.mark.integration
    async def test_apply_approve_disburse_scenario(self, db_session, borrower):
        borrower_id = borrower.id
        loans = LoanService(db_session)
        ledger = LedgerService(db_session)

        loan = await loans.apply_loan(borrower_id, Decimal("50000"), "Fishing boat engine", 12)
        mine = await loans.get_user_loans(borrower_id)
        assert [(l.id, l.status) for l in mine] == [(loan.id, LoanStatus.PENDING)]

        loan = await loans.approve_loan(loan.id)
        assert loan.status == LoanStatus.APPROVED
        assert await ledger.recent_transactions(borrower_id) == []

        loan, txn = await loans.disburse_loan(loan.id)

        assert loan.status == LoanStatus.ACTIVE
        entries = await ledger.recent_transactions(borrower_id)
        assert len(entries) == 1
        assert entries[0].id == txn.id
        assert entries[0].type == TransactionType.LOAN_DISBURSEMENT.value
        assert entries[0].amount == Decimal("50000")
        assert entries[0].loan_id == loan.id
        assert await ledger.compute_balance(borrower_id) == Decimal("50000")

    @pytest.mark.integration
    async def test_disburse_pending_loan_fails_without_side_effects(self, db_session, pending_loan):
        loan_id = pending_loan.id
        service = LoanService(db_session)

        with pytest.raises(InvalidTransition):
            await service.disburse_loan(loan_id)

        assert (await service.get_loan(loan_id)).status == LoanStatus.PENDING
        assert await _loan_transactions(db_session, loan_id) == []

    @pytest.mark.integration
    async def test_second_disbursement_fails(self, db_session, approved_loan):
        loan_id = approved_loan.id
        service = LoanService(db_session)
        await service.disburse_loan(loan_id)

        with pytest.raises(InvalidTransition):
            await service.disburse_loan(loan_id)

        assert len(await _loan_transactions(db_session, loan_id)) == 1

    @pytest.mark.integration
    async def test_status_update_failure_rolls_back_ledger_entry(self, db_session, approved_loan, monkeypatch):
        loan_id = approved_loan.id
        service = LoanService(db_session)

        async def broken_transition(self, *args, **kwargs):
            raise RuntimeError("connection dropped between writes")

        with monkeypatch.context() as patched:
            patched.setattr(LoanService, "_transition", broken_transition)
            with pytest.raises(RuntimeError):
                await service.disburse_loan(loan_id)

        assert (await service.get_loan(loan_id)).status == LoanStatus.APPROVED
        assert await _loan_transactions(db_session, loan_id) == []

        # The same loan disburses cleanly once the store behaves
        loan, _ = await service.disburse_loan(loan_id)
        assert loan.status == LoanStatus.ACTIVE
        assert len(await _loan_transactions(db_session, loan_id)) == 1

    @pytest.mark.integration
    async def test_ledger_failure_leaves_loan_approved(self, db_session, approved_loan, monkeypatch):
        loan_id = approved_loan.id
        service = LoanService(db_session)

        async def broken_append(self, *args, **kwargs):
            raise RuntimeError("ledger insert failed")

        monkeypatch.setattr(LedgerService, "append", broken_append)
        with pytest.raises(RuntimeError):
            await service.disburse_loan(loan_id)

        assert (await service.get_loan(loan_id)).status == LoanStatus.APPROVED
        assert await _loan_transactions(db_session, loan_id) == []


class TestConcurrentTransitions:
    """Two requests, two sessions, one loan"""

    @pytest.fixture
    async def shared_engine(self, tmp_path):
        engine = create_async_engine(
            f"sqlite+aiosqlite:///{tmp_path / 'lending.db'}",
            poolclass=NullPool
        )
        async with engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
        yield engine
        await engine.dispose()

    @pytest.fixture
    async def session_factory(self, shared_engine):
        return async_sessionmaker(shared_engine, expire_on_commit=False)

    @pytest.fixture
    async def contested_loan_id(self, session_factory):
        async with session_factory() as session:
            user = await UserService.create_user(session, "Racer", "racer@example.com", "secret123")
            loan = await LoanService(session).apply_loan(user.id, Decimal("1000"), "Stock", 6)
            return loan.id

    @pytest.mark.integration
    async def test_second_of_two_racing_approvals_fails(self, session_factory, contested_loan_id):
        async with session_factory() as first, session_factory() as second:
            seen_first = await LoanService(first).get_loan(contested_loan_id)
            seen_second = await LoanService(second).get_loan(contested_loan_id)
            assert seen_first.status == seen_second.status == LoanStatus.PENDING

            await LoanService(first).approve_loan(contested_loan_id)
            with pytest.raises(InvalidTransition):
                await LoanService(second).approve_loan(contested_loan_id)

        async with session_factory() as check:
            assert (await LoanService(check).get_loan(contested_loan_id)).status == LoanStatus.APPROVED

    @pytest.mark.integration
    async def test_concurrent_approvals_have_one_winner(self, session_factory, contested_loan_id):
        async with session_factory() as first, session_factory() as second:
            outcomes = await asyncio.gather(
                LoanService(first).approve_loan(contested_loan_id),
                LoanService(second).approve_loan(contested_loan_id),
                return_exceptions=True
            )

        assert sorted(type(outcome).__name__ for outcome in outcomes) == ["InvalidTransition", "Loan"]
        async with session_factory() as check:
            assert (await LoanService(check).get_loan(contested_loan_id)).status == LoanStatus.APPROVED

    @pytest.mark.integration
    async def test_stale_read_cannot_overwrite_committed_transition(self, session_factory, contested_loan_id):
        async with session_factory() as first, session_factory() as second:
            stale = await LoanService(second).get_loan(contested_loan_id)

            await LoanService(first).reject_loan(contested_loan_id)

            # second still believes the loan is pending; the compare-and-set must refuse
            assert stale.status == LoanStatus.PENDING
            with pytest.raises(InvalidTransition):
                await LoanService(second)._transition(stale, LoanStatus.APPROVED)
            await second.rollback()

        async with session_factory() as check:
            assert (await LoanService(check).get_loan(contested_loan_id)).status == LoanStatus.REJECTED

"""Rewrite legacy loan statuses and transaction types to canonical values

Databases created by older backends carry spellings such as
'APPROVED_PENDING_DISBURSE', 'REJECTED', 'pending_approval', 'PendingApproval',
'cash deposit' or 'loan_issued'. They are folded onto the canonical set here,
matching on letters only the same way the application reads them, then a
check constraint stops new variants from being written.

Loan statuses with no canonical counterpart (for example 'paid') would make
the constraint fail; the upgrade refuses to start and names them instead.

Revision ID: 8d41e0b5a2c7
Revises: 3f2a9c1d7b10
Create Date: 2026-10-19 12:10:00.000000

"""
import re
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = '8d41e0b5a2c7'
down_revision: Union[str, None] = '3f2a9c1d7b10'
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


# Keys are lower-cased with everything but letters stripped
STATUS_ALIASES = {
    'pending': 'pending',
    'pendingapproval': 'pending',
    'approved': 'approved',
    'approvedpendingdisburse': 'approved',
    'active': 'active',
    'disbursed': 'active',
    'rejected': 'rejected',
}

TYPE_ALIASES = {
    'deposit': 'deposit',
    'cashdeposit': 'deposit',
    'withdrawal': 'withdrawal',
    'withdraw': 'withdrawal',
    'cashwithdrawal': 'withdrawal',
    'loandisbursement': 'loan_disbursement',
    'loanissued': 'loan_disbursement',
    'loanpayment': 'loan_payment',
    'loanrepayment': 'loan_payment',
}


def _canonical(value, aliases: dict):
    if value is None:
        return None
    return aliases.get(re.sub(r'[^a-z]', '', value.lower()))


def _stored_values(table: str, column: str) -> list:
    return list(op.get_bind().execute(sa.text(f"SELECT DISTINCT {column} FROM {table}")).scalars())


def _fold(table: str, column: str, aliases: dict) -> None:
    """Rewrite every stored spelling that has a canonical value; leave the rest"""
    bind = op.get_bind()
    for value in _stored_values(table, column):
        canonical = _canonical(value, aliases)
        if canonical is None or canonical == value:
            continue
        bind.execute(
            sa.text(f"UPDATE {table} SET {column} = :canonical WHERE {column} = :value"),
            {'canonical': canonical, 'value': value}
        )


def upgrade() -> None:
    unknown = [
        value for value in _stored_values('loans', 'status')
        if _canonical(value, STATUS_ALIASES) is None
    ]
    if unknown:
        raise RuntimeError(
            "loans.status holds values with no canonical status: "
            + ", ".join(sorted(repr(value) for value in unknown))
            + ". Rewrite or remove those loans, then run the upgrade again."
        )

    _fold('loans', 'status', STATUS_ALIASES)
    _fold('transactions', 'type', TYPE_ALIASES)

    with op.batch_alter_table('loans') as batch_op:
        batch_op.create_check_constraint(
            'ck_loans_status_canonical',
            "status IN ('pending', 'approved', 'active', 'rejected')"
        )


def downgrade() -> None:
    with op.batch_alter_table('loans') as batch_op:
        batch_op.drop_constraint('ck_loans_status_canonical', type_='check')

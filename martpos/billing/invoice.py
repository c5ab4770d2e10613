"""
martpos/billing/invoice.py
--------------------------
Concurrency-safe bill number generation.

Format:  <PREFIX>-YYYYMMDD-NNN
Example: POS-20261019-001, POS-20261019-002, … POS-20261019-1000

Algorithm
─────────
1. Lock today's BillSequence row with SELECT … FOR UPDATE.
   Concurrent checkouts block here until the holder commits.
2. If no row exists yet (first sale of the day), INSERT one with
   last_seq = 0, then lock it.
3. Increment last_seq and flush.

The lock is released when the caller's transaction commits or rolls
back. Checkout calls this inside the same transaction as the Sale
INSERT, so the sequence only advances for sales that actually commit.
"""
from datetime import date


def next_sequence(db_session, day: date) -> int:
    """
    Advance and return the sequence for `day`.

    MUST be called inside an open SQLAlchemy transaction.
    """
    from martpos.billing.models import BillSequence

    seq_row = (
        db_session.query(BillSequence)
        .filter(BillSequence.day == day)
        .with_for_update()
        .first()
    )

    if seq_row is None:
        seq_row = BillSequence(day=day, last_seq=0)
        db_session.add(seq_row)
        db_session.flush()

        seq_row = (
            db_session.query(BillSequence)
            .filter(BillSequence.day == day)
            .with_for_update()
            .first()
        )

    seq_row.last_seq += 1
    db_session.flush()
    return seq_row.last_seq


def format_bill_number(prefix: str, day: date, seq: int) -> str:
    """Zero-pad to 3 digits; grows naturally past 999 on busy days."""
    return f"{prefix}-{day:%Y%m%d}-{seq:03d}"

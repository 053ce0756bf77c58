"""
kasir/orders/codes.py
---------------------
Concurrency-safe, human-readable order codes.

Format:  <PREFIX>-YYYYMMDD-NNNN
Example: TRX-20261019-0001, TRX-20261019-0002, …

1. Lock today's OrderSequence row with SELECT … FOR UPDATE
   (concurrent checkouts block here until the holder commits).
2. First order of the day: INSERT the row with last_seq = 0, then lock it.
   When two checkouts race on that INSERT, the loser rolls back and
   locks the winner's row instead.
3. Increment last_seq and return the formatted code.

The lock is released when the caller's transaction commits or rolls
back, so the counter and the Order INSERT are atomic. A rolled-back
checkout leaves no gap in the day's series.
"""
from datetime import datetime

from sqlalchemy.exc import IntegrityError


def _locked_row(db_session, day: str):
    from kasir.orders.models import OrderSequence

    return (
        db_session.query(OrderSequence)
        .filter(OrderSequence.day == day)
        .with_for_update()
        .first()
    )


def generate_order_code(db_session, prefix: str = 'TRX') -> str:
    """
    Allocate the next order code for today.

    MUST be called inside the transaction that inserts the Order, before
    anything else is added to it: losing the first-of-day INSERT race
    rolls that transaction back.
    """
    from kasir.orders.models import OrderSequence

    day = datetime.now().strftime('%Y%m%d')

    seq_row = _locked_row(db_session, day)

    if seq_row is None:
        try:
            db_session.add(OrderSequence(day=day, last_seq=0))
            db_session.flush()
        except IntegrityError:
            # another checkout inserted today's row first
            db_session.rollback()
        seq_row = _locked_row(db_session, day)

    seq_row.last_seq += 1
    db_session.flush()

    return f"{prefix}-{day}-{seq_row.last_seq:04d}"

"""
Per-session state, and the prompt derived from it.
"""

from dataclasses import dataclass
from enum import StrEnum
from typing import Self

DEFAULT_MAX_DISPLAY_ROWS = 1000


class TransactionStatus(StrEnum):
    """
    Whether the session has an explicitly opened transaction. Savepoints
    aren't tracked.
    """

    NONE = "none"
    IN_TRANSACTION = "in-transaction"


@dataclass
class SessionState:
    """
    The mutable state of one shell session. There's exactly one of these per
    session; the dispatcher and the statement router share it.

    `max_display_rows` caps the rows shown for a query. 0 means no cap.
    """

    current_database: str
    in_transaction: bool = False
    expanded_mode: bool = False
    timing_enabled: bool = False
    max_display_rows: int = DEFAULT_MAX_DISPLAY_ROWS

    @property
    def transaction_status(self: Self) -> TransactionStatus:
        """
        The transaction state, as a TransactionStatus.
        """
        if self.in_transaction:
            return TransactionStatus.IN_TRANSACTION
        return TransactionStatus.NONE


def make_prompt(state: SessionState, continuation: bool = False) -> str:
    """
    Make the prompt for the command loop.

    :param state: the session state
    :param continuation: whether a multi-line statement is being read
    """
    if continuation:
        return f"{state.current_database}-> "

    match state.transaction_status:
        case TransactionStatus.IN_TRANSACTION:
            return f"{state.current_database}*=> "
        case _:
            return f"{state.current_database}=> "

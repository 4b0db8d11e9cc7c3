"""
Round history service.

Builds the list of settled rounds for a ledger from its ROUND_CLOSED
events, so operators and players can see past winners without the
ledger keeping closed stake slots around.
"""
from typing import List, Dict, Any

from sqlalchemy.orm import Session

from models import EventLog


def get_round_history(ledger_id: str, db: Session) -> List[Dict[str, Any]]:
    """
    Return settled rounds ordered by round number (oldest first).

    Each entry carries round_number, stake_count, prize, winner,
    winning_index and closed_at (unix seconds). Rounds closed without
    stakes are included with winner None and prize 0.
    """
    events = (
        db.query(EventLog)
        .filter(EventLog.ledger_id == ledger_id, EventLog.event_type == "ROUND_CLOSED")
        .order_by(EventLog.id)
        .all()
    )

    history: List[Dict[str, Any]] = []
    for event in events:
        data = event.data or {}
        history.append({
            "round_number": data.get("round_number"),
            "stake_count": data.get("stake_count", 0),
            "prize": data.get("prize", 0),
            "winner": data.get("winner"),
            "winning_index": data.get("winning_index"),
            "closed_at": data.get("closed_at"),
        })

    history.sort(key=lambda entry: entry["round_number"] or 0)
    return history


def total_paid_to(ledger_id: str, identity: str, db: Session) -> int:
    """Sum of prizes ever awarded to identity on this ledger."""
    return sum(
        entry["prize"]
        for entry in get_round_history(ledger_id, db)
        if entry["winner"] == identity
    )

"""
Append-only usage audit log.

Every provider call made on behalf of a chat turn is written here so
spend can be reviewed after the process (and its in-memory ledger) is
gone. Rows are never updated or deleted.
"""

import threading
from datetime import datetime
from decimal import Decimal
from typing import List, Optional

from .db import DEFAULT_DB_PATH, get_connection
from .models import UsageEvent, UsageSummary

_SELECT_COLUMNS = """
    SELECT timestamp, session_id, model, prompt_tokens, completion_tokens,
           cost, billed, request_id
    FROM usage_event
"""


def initialize_schema(db_path: str = DEFAULT_DB_PATH) -> None:
    """Create the usage_event table if it doesn't exist.
    
    Costs are stored as TEXT so Decimal values round-trip exactly.
    
    Args:
        db_path: Path to SQLite database file
    """
    conn = get_connection(db_path)
    try:
        conn.execute("""
            CREATE TABLE IF NOT EXISTS usage_event (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                timestamp TEXT NOT NULL,
                session_id TEXT NOT NULL,
                model TEXT NOT NULL,
                prompt_tokens INTEGER NOT NULL,
                completion_tokens INTEGER NOT NULL,
                total_tokens INTEGER NOT NULL,
                cost TEXT NOT NULL,
                billed INTEGER NOT NULL DEFAULT 1,
                request_id TEXT
            )
        """)
        conn.commit()
    finally:
        conn.close()


def _row_to_event(row) -> UsageEvent:
    return UsageEvent(
        timestamp=datetime.fromisoformat(row[0]),
        session_id=row[1],
        model=row[2],
        prompt_tokens=row[3],
        completion_tokens=row[4],
        cost=Decimal(row[5]),
        billed=bool(row[6]),
        request_id=row[7]
    )


class UsageRepository:
    """Repository for writing and reading usage events.
    
    Writes are serialized with a lock because chat turns complete on many
    worker threads at once.
    """
    
    def __init__(self, db_path: str = DEFAULT_DB_PATH):
        """Initialize the repository and make sure the schema exists.
        
        Args:
            db_path: Path to SQLite database file
        """
        self.db_path = db_path
        self._write_lock = threading.Lock()
        initialize_schema(db_path)
    
    def record(self, event: UsageEvent) -> None:
        """Append a single usage event.
        
        Args:
            event: The usage event to record
        """
        with self._write_lock:
            conn = get_connection(self.db_path)
            try:
                conn.execute("""
                    INSERT INTO usage_event
                    (timestamp, session_id, model, prompt_tokens, completion_tokens,
                     total_tokens, cost, billed, request_id)
                    VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
                """, (
                    event.timestamp.isoformat(),
                    event.session_id,
                    event.model,
                    event.prompt_tokens,
                    event.completion_tokens,
                    event.total_tokens,
                    str(event.cost),
                    1 if event.billed else 0,
                    event.request_id
                ))
                conn.commit()
            finally:
                conn.close()
    
    def fetch_recent(
        self,
        session_id: Optional[str] = None,
        limit: int = 100
    ) -> List[UsageEvent]:
        """Fetch recent usage events, newest first.
        
        Args:
            session_id: Optional filter for a single chat session
            limit: Maximum number of events to return
            
        Returns:
            List of usage events ordered by timestamp (newest first)
        """
        conn = get_connection(self.db_path)
        try:
            query = _SELECT_COLUMNS
            params: list = []
            if session_id:
                query += " WHERE session_id = ?"
                params.append(session_id)
            query += " ORDER BY timestamp DESC, id DESC LIMIT ?"
            params.append(limit)
            
            cursor = conn.execute(query, params)
            return [_row_to_event(row) for row in cursor.fetchall()]
        finally:
            conn.close()
    
    def summarize(self) -> UsageSummary:
        """Aggregate request count, cost, tokens and session count.
        
        Costs are summed in Python with Decimal; SQLite would sum TEXT
        columns as floats.
        """
        conn = get_connection(self.db_path)
        try:
            cursor = conn.execute(
                "SELECT cost, billed, total_tokens, session_id FROM usage_event"
            )
            total_cost = Decimal("0")
            billed_cost = Decimal("0")
            total_tokens = 0
            requests = 0
            sessions = set()
            for cost, billed, tokens, session_id in cursor.fetchall():
                amount = Decimal(cost)
                total_cost += amount
                if billed:
                    billed_cost += amount
                total_tokens += tokens
                requests += 1
                sessions.add(session_id)
            return UsageSummary(
                total_requests=requests,
                total_cost=total_cost,
                billed_cost=billed_cost,
                total_tokens=total_tokens,
                sessions=len(sessions)
            )
        finally:
            conn.close()

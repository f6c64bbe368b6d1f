import json
import logging
from typing import Any, Dict, List, Optional

from sqlalchemy import func, or_
from sqlalchemy.orm import Session

from facelogin.config import ACTIVITY_LOG_LIMIT
from facelogin.models import ActivityLogEntry

logger = logging.getLogger(__name__)

LOGIN_ACTION = "login"


class ActivityLog:
    """Capped activity feed; only the newest ``limit`` entries are kept."""

    def __init__(self, db: Session, limit: int = ACTIVITY_LOG_LIMIT):
        self.db = db
        self.limit = limit

    def record(
        self,
        username: str,
        action: str,
        page: Optional[str] = None,
        details: Optional[Any] = None,
    ) -> ActivityLogEntry:
        entry = ActivityLogEntry(
            username=username,
            action=action,
            page=page,
            details=json.dumps(details) if details is not None else None,
        )
        self.db.add(entry)
        self.db.flush()
        self._trim()
        self.db.commit()
        self.db.refresh(entry)

        logger.debug(f"Activity recorded: user={username}, action={action}, page={page}")
        return entry

    def _trim(self):
        stale_ids = [
            row.id
            for row in self.db.query(ActivityLogEntry.id)
            .order_by(ActivityLogEntry.id.desc())
            .offset(self.limit)
            .all()
        ]
        if stale_ids:
            self.db.query(ActivityLogEntry).filter(ActivityLogEntry.id.in_(stale_ids)).delete(
                synchronize_session=False
            )

    def recent(self, action: Optional[str] = None, search: Optional[str] = None) -> List[ActivityLogEntry]:
        """
        Entries newest first.

        Args:
            action: keep only entries with exactly this action ("all" or None disables the filter)
            search: case-insensitive substring matched against username or action
        """
        query = self.db.query(ActivityLogEntry)
        if action and action != "all":
            query = query.filter(ActivityLogEntry.action == action)
        if search:
            pattern = f"%{search.lower()}%"
            query = query.filter(
                or_(
                    func.lower(ActivityLogEntry.username).like(pattern),
                    func.lower(ActivityLogEntry.action).like(pattern),
                )
            )
        return query.order_by(ActivityLogEntry.id.desc()).all()

    def summary(self) -> Dict[str, int]:
        total = self.db.query(func.count(ActivityLogEntry.id)).scalar()
        logins = (
            self.db.query(func.count(ActivityLogEntry.id))
            .filter(ActivityLogEntry.action == LOGIN_ACTION)
            .scalar()
        )
        active_users = self.db.query(func.count(func.distinct(ActivityLogEntry.username))).scalar()
        return {"total": total or 0, "logins": logins or 0, "active_users": active_users or 0}


def entry_to_dict(entry: ActivityLogEntry) -> dict:
    return {
        "id": entry.id,
        "user": entry.username,
        "action": entry.action,
        "page": entry.page,
        "details": json.loads(entry.details) if entry.details else None,
        "timestamp": entry.timestamp,
    }

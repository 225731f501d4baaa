"""
Repository Pattern for ANPR Database Operations

Provides the data access layer for plates, events and lists.
Repositories flush but never commit; transaction boundaries belong to the
caller (service or unit of work).
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional, Tuple

from sqlalchemy import and_, delete, func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from database.models import (
    ANPREvent,
    DEFAULT_LISTS,
    ListItem,
    ListType,
    Plate,
    PlateList,
)
from database.monitoring import timed_query

logger = logging.getLogger(__name__)


class RepositoryError(Exception):
    """Base exception for repository errors."""
    pass


class DuplicatePlateError(RepositoryError):
    """Raised when a plate insert conflicts and the winner cannot be read back."""
    pass


@dataclass
class ListHit:
    """A list that contains a given plate."""
    list_id: int
    list_name: str
    list_type: str

    def to_dict(self) -> Dict[str, Any]:
        return {
            "list_id": self.list_id,
            "list_name": self.list_name,
            "list_type": self.list_type,
        }


def _blank_to_none(value: Any) -> Any:
    """Map empty strings to None so optional columns stay NULL."""
    if isinstance(value, str) and not value.strip():
        return None
    return value


# ============================================
# PLATE REPOSITORY
# ============================================

class PlateRepository:
    """Repository for plate operations."""

    def __init__(self, session: Session):
        self.session = session

    @timed_query("get_plate_by_normalized")
    def get_by_normalized(self, normalized: str) -> Optional[Plate]:
        """
        Get the plate with the given normalized key.

        Args:
            normalized: Normalized plate text

        Returns:
            Plate or None
        """
        query = select(Plate).where(Plate.normalized == normalized)
        return self.session.execute(query).scalar_one_or_none()

    @timed_query("find_plates_by_normalized")
    def find_by_normalized(self, normalized: str) -> List[Plate]:
        query = select(Plate).where(Plate.normalized == normalized).order_by(Plate.id)
        return list(self.session.execute(query).scalars().all())

    @timed_query("get_or_create_plate")
    def get_or_create(self, normalized: str, original: str) -> Plate:
        """
        Return the plate for ``normalized``, creating it on first sight.

        When a concurrent request inserts the same plate first, the unique
        index rejects our insert; the transaction is rolled back and the
        winning row is returned instead.

        Args:
            normalized: Normalized plate text (unique key)
            original: Raw plate text stored on creation

        Returns:
            Existing or newly created Plate

        Raises:
            DuplicatePlateError: If the insert conflicted but no row can be read back
        """
        plate = self.get_by_normalized(normalized)
        if plate is not None:
            return plate

        plate = Plate(number=original, normalized=normalized)
        self.session.add(plate)
        try:
            self.session.flush()
        except IntegrityError as e:
            self.session.rollback()
            existing = self.get_by_normalized(normalized)
            if existing is None:
                raise DuplicatePlateError(f"Plate insert conflicted: {normalized}") from e
            logger.info("Plate %s was created concurrently, reusing id=%s", normalized, existing.id)
            return existing

        logger.debug("Created plate: %s (%s)", plate.id, plate.normalized)
        return plate


# ============================================
# EVENT REPOSITORY
# ============================================

class EventRepository:
    """Repository for ANPR event operations."""

    def __init__(self, session: Session):
        self.session = session

    @timed_query("create_event")
    def create(self, event_data: Dict[str, Any]) -> ANPREvent:
        """
        Append a new event.

        Empty string values are stored as NULL.

        Args:
            event_data: Dictionary of ANPREvent fields

        Returns:
            Created ANPREvent with its generated id
        """
        values = {key: _blank_to_none(value) for key, value in event_data.items()}
        if not values.get("raw_payload"):
            values["raw_payload"] = None

        event = ANPREvent(**values)
        self.session.add(event)
        self.session.flush()

        logger.debug("Created event: %s (%s)", event.id, event.normalized_plate)
        return event

    @timed_query("find_events")
    def find(
        self,
        normalized_plate: Optional[str] = None,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
        limit: int = 50,
        offset: int = 0
    ) -> List[ANPREvent]:
        """
        List events, newest first.

        Args:
            normalized_plate: Only events for this normalized plate
            start: Only events at or after this time
            end: Only events at or before this time
            limit: Maximum results
            offset: Pagination offset

        Returns:
            List of events ordered by event_time descending
        """
        conditions = []
        if normalized_plate is not None:
            conditions.append(ANPREvent.normalized_plate == normalized_plate)
        if start is not None:
            conditions.append(ANPREvent.event_time >= start)
        if end is not None:
            conditions.append(ANPREvent.event_time <= end)

        query = select(ANPREvent)
        if conditions:
            query = query.where(and_(*conditions))

        query = query.order_by(
            ANPREvent.event_time.desc(), ANPREvent.id.desc()
        ).offset(offset).limit(limit)

        return list(self.session.execute(query).scalars().all())

    @timed_query("last_event_time_for_plate")
    def last_event_time_for_plate(self, plate_id: int) -> Optional[datetime]:
        query = select(func.max(ANPREvent.event_time)).where(ANPREvent.plate_id == plate_id)
        return self.session.execute(query).scalar_one_or_none()

    @timed_query("count_events")
    def count(self) -> int:
        return self.session.execute(select(func.count()).select_from(ANPREvent)).scalar_one()

    @timed_query("delete_old_events")
    def delete_older_than(self, days: int, now: Optional[datetime] = None) -> int:
        """
        Delete events whose event_time is older than ``now - days``.

        Args:
            days: Retention window in days
            now: Reference time (defaults to the current UTC time)

        Returns:
            Number of rows deleted
        """
        reference = now or datetime.now(timezone.utc)
        cutoff = reference - timedelta(days=days)

        statement = delete(ANPREvent).where(
            ANPREvent.event_time < cutoff
        ).execution_options(synchronize_session=False)

        result = self.session.execute(statement)
        return result.rowcount or 0


# ============================================
# LIST REPOSITORY
# ============================================

class ListRepository:
    """Repository for whitelists, blacklists and their members."""

    def __init__(self, session: Session):
        self.session = session

    @timed_query("get_list_by_name")
    def get_by_name(self, name: str) -> Optional[PlateList]:
        query = select(PlateList).where(PlateList.name == name)
        return self.session.execute(query).scalar_one_or_none()

    @timed_query("create_list")
    def create(
        self,
        name: str,
        list_type: ListType,
        description: Optional[str] = None
    ) -> PlateList:
        plate_list = PlateList(name=name, list_type=list_type, description=description)
        self.session.add(plate_list)
        self.session.flush()
        return plate_list

    def seed_defaults(self) -> int:
        """
        Create the default whitelist and blacklist if they are missing.

        Returns:
            Number of lists created
        """
        created = 0
        for name, list_type, description in DEFAULT_LISTS:
            if self.get_by_name(name) is None:
                self.create(name, list_type, description)
                logger.info("Created default list: %s", name)
                created += 1
        return created

    @timed_query("add_plate_to_list")
    def add_plate(
        self,
        list_id: int,
        plate_id: int,
        note: Optional[str] = None
    ) -> Tuple[ListItem, bool]:
        """
        Add a plate to a list.

        Args:
            list_id: Target list
            plate_id: Plate to add
            note: Optional note stored on the membership

        Returns:
            Tuple of (membership row, True if it was created)
        """
        item = self.session.get(ListItem, (list_id, plate_id))
        if item is not None:
            return item, False

        item = ListItem(list_id=list_id, plate_id=plate_id, note=note)
        self.session.add(item)
        self.session.flush()
        return item, True

    @timed_query("find_list_hits")
    def find_hits(self, plate_id: int) -> List[ListHit]:
        """
        Find every list that contains the plate.

        Args:
            plate_id: Plate to look up

        Returns:
            List hits (empty if the plate is on no list)
        """
        query = select(
            PlateList.id, PlateList.name, PlateList.list_type
        ).join(
            ListItem, ListItem.list_id == PlateList.id
        ).where(
            ListItem.plate_id == plate_id
        ).order_by(PlateList.id)

        hits = []
        for row in self.session.execute(query):
            list_type = row[2]
            hits.append(ListHit(
                list_id=row[0],
                list_name=row[1],
                list_type=list_type.value if isinstance(list_type, ListType) else str(list_type),
            ))
        return hits

"""
SQLAlchemy ORM Models for the ANPR Event Service

This module defines the relational schema used to persist plate detections:
- One canonical row per plate, keyed on the normalized plate text
- Append-only event log linked to plates
- Named lists (whitelist / blacklist) with many-to-many plate membership
- BIGINT identity keys (INTEGER on SQLite so autoincrement works in tests)
- Timestamps on every record (created_at)

Tables:
1. plates - Canonical plates (unique on normalized text)
2. vehicles - Optional vehicle descriptions attached to a plate
3. anpr_events - Every detection reported by a camera
4. lists - Named whitelists and blacklists
5. list_items - Junction table linking lists to plates (many-to-many)
"""

import re
import unicodedata
from datetime import datetime
from enum import Enum as PyEnum
from typing import Any, Dict, List, Optional

from sqlalchemy import (
    BigInteger, DateTime, Enum, ForeignKey, Index, Integer, JSON, Numeric,
    String, Text
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, declarative_base, mapped_column, relationship
from sqlalchemy.sql import func

# Base class for all models
Base = declarative_base()

# SQLite only autoincrements INTEGER PRIMARY KEY columns
BigIntegerId = BigInteger().with_variant(Integer, "sqlite")

# Opaque JSON blobs: JSONB on PostgreSQL, plain JSON elsewhere
JSONBlob = JSON(none_as_null=True).with_variant(JSONB(none_as_null=True), "postgresql")


# ============================================
# ENUMS
# ============================================

class ListType(str, PyEnum):
    """Kind of plate list"""
    WHITELIST = "WHITELIST"
    BLACKLIST = "BLACKLIST"


# Lists created at bootstrap: (name, type, description)
DEFAULT_LISTS = (
    ("default_whitelist", ListType.WHITELIST, "Default whitelist"),
    ("default_blacklist", ListType.BLACKLIST, "Default blacklist"),
)

DEFAULT_WHITELIST_NAME = "default_whitelist"


# ============================================
# MIXIN CLASSES
# ============================================

class TimestampMixin:
    """Mixin for the created_at timestamp"""
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        nullable=False
    )


# ============================================
# PLATE MODELS
# ============================================

class Plate(Base, TimestampMixin):
    """
    Canonical license plate.

    A plate row is created the first time its normalized text is seen and is
    never modified afterwards. ``number`` keeps the raw text of that first
    sighting.
    """
    __tablename__ = "plates"

    id: Mapped[int] = mapped_column(BigIntegerId, primary_key=True, autoincrement=True)

    # Raw plate text as first reported
    number: Mapped[str] = mapped_column(Text, nullable=False)

    # Canonical key (uppercase, alphanumerics only)
    normalized: Mapped[str] = mapped_column(Text, nullable=False)

    country: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    region: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    # Relationships
    events: Mapped[List["ANPREvent"]] = relationship(
        "ANPREvent",
        back_populates="plate",
        lazy="dynamic"
    )
    list_items: Mapped[List["ListItem"]] = relationship(
        "ListItem",
        back_populates="plate",
        cascade="all, delete-orphan",
        lazy="selectin"
    )

    __table_args__ = (
        Index('ux_plates_normalized', 'normalized', unique=True),
    )

    def __repr__(self) -> str:
        return f"<Plate(id={self.id}, normalized='{self.normalized}')>"


class Vehicle(Base, TimestampMixin):
    """
    Descriptive vehicle data attached to a plate.
    """
    __tablename__ = "vehicles"

    id: Mapped[int] = mapped_column(BigIntegerId, primary_key=True, autoincrement=True)
    plate_id: Mapped[Optional[int]] = mapped_column(
        BigIntegerId,
        ForeignKey("plates.id"),
        nullable=True
    )

    make: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    model: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    color: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    body_type: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    def __repr__(self) -> str:
        return f"<Vehicle(id={self.id}, plate_id={self.plate_id})>"


# ============================================
# EVENT MODELS
# ============================================

class ANPREvent(Base, TimestampMixin):
    """
    A single plate detection reported by a camera.

    Append-only: rows are never updated, and only removed by the age-based
    retention purge.
    """
    __tablename__ = "anpr_events"

    id: Mapped[int] = mapped_column(BigIntegerId, primary_key=True, autoincrement=True)
    plate_id: Mapped[Optional[int]] = mapped_column(
        BigIntegerId,
        ForeignKey("plates.id"),
        nullable=True
    )

    # Camera information
    camera_id: Mapped[str] = mapped_column(Text, nullable=False)
    camera_model: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    direction: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    lane: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)

    # Plate text as reported and as normalized
    raw_plate: Mapped[str] = mapped_column(Text, nullable=False)
    normalized_plate: Mapped[str] = mapped_column(Text, nullable=False)

    # Recognition details
    confidence: Mapped[Optional[float]] = mapped_column(
        Numeric(5, 2, asdecimal=False),
        nullable=True
    )
    vehicle_color: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    vehicle_type: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    snapshot_url: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    event_time: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    # Original payload, stored as-is
    raw_payload: Mapped[Optional[Dict[str, Any]]] = mapped_column(JSONBlob, nullable=True)

    # Relationship
    plate: Mapped[Optional["Plate"]] = relationship(
        "Plate",
        back_populates="events"
    )

    __table_args__ = (
        Index('idx_anpr_events_plate_id', 'plate_id'),
        Index('idx_anpr_events_event_time', 'event_time'),
    )

    def __repr__(self) -> str:
        return (
            f"<ANPREvent(id={self.id}, plate='{self.normalized_plate}', "
            f"camera_id='{self.camera_id}')>"
        )


# ============================================
# LIST MODELS
# ============================================

class PlateList(Base, TimestampMixin):
    """
    Named list of plates (whitelist or blacklist).
    """
    __tablename__ = "lists"

    id: Mapped[int] = mapped_column(BigIntegerId, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(Text, nullable=False)
    list_type: Mapped[ListType] = mapped_column(
        "type",
        Enum(ListType, native_enum=False, length=20),
        nullable=False
    )
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    items: Mapped[List["ListItem"]] = relationship(
        "ListItem",
        back_populates="plate_list",
        cascade="all, delete-orphan",
        lazy="dynamic"
    )

    __table_args__ = (
        Index('ux_lists_name', 'name', unique=True),
    )

    def __repr__(self) -> str:
        return f"<PlateList(name='{self.name}', type={self.list_type})>"


class ListItem(Base, TimestampMixin):
    """
    Junction table for list membership.
    """
    __tablename__ = "list_items"

    list_id: Mapped[int] = mapped_column(
        BigIntegerId,
        ForeignKey("lists.id"),
        primary_key=True
    )
    plate_id: Mapped[int] = mapped_column(
        BigIntegerId,
        ForeignKey("plates.id"),
        primary_key=True
    )
    note: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    plate_list: Mapped["PlateList"] = relationship(
        "PlateList",
        back_populates="items"
    )
    plate: Mapped["Plate"] = relationship(
        "Plate",
        back_populates="list_items"
    )

    def __repr__(self) -> str:
        return f"<ListItem(list_id={self.list_id}, plate_id={self.plate_id})>"


# ============================================
# HELPER FUNCTIONS
# ============================================

_NON_ALNUM = re.compile(r'[\W_]+', re.UNICODE)


def normalize_plate(plate: Optional[str]) -> str:
    """
    Normalize raw plate text into its canonical key.

    Applies NFKC (folds full-width characters), uppercases and removes every
    character that is not a letter or a digit.

    Args:
        plate: Raw plate text (can be None)

    Returns:
        Normalized plate, or empty string if nothing is left
    """
    if not plate:
        return ""

    normalized = unicodedata.normalize('NFKC', plate)
    normalized = _NON_ALNUM.sub('', normalized)
    return normalized.upper()

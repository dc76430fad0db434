"""
Declarative base shared by every ledger table.

Each row gets an integer id, whose order is also insertion order and so
breaks FEFO ties, a UUID for external references, and UTC created/updated
stamps. to_dict() renders dates as ISO strings and Decimals as strings so
quantities keep their exact scale in service results.
"""

import uuid as uuid_lib
from datetime import date, datetime
from decimal import Decimal
from typing import Any, Dict

from sqlalchemy import Column, Integer, String, DateTime
from sqlalchemy.orm import declarative_base, validates

from src.utils.datetime_utils import utc_now

Base = declarative_base()


def _serialize_value(value: Any) -> Any:
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, Decimal):
        return str(value)
    return value


class BaseModel(Base):
    """Abstract parent of all ledger models."""

    __abstract__ = True

    id = Column(Integer, primary_key=True, autoincrement=True)
    uuid = Column(
        String(36), unique=True, nullable=False, default=lambda: str(uuid_lib.uuid4()), index=True
    )
    created_at = Column(DateTime, nullable=False, default=utc_now)
    updated_at = Column(DateTime, nullable=False, default=utc_now, onupdate=utc_now)

    def to_dict(self, include_relationships: bool = False) -> Dict[str, Any]:
        """
        Serialize the row's columns.

        Args:
            include_relationships: Also serialize loaded related rows, one level deep
        """
        result = {
            column.name: _serialize_value(getattr(self, column.name))
            for column in self.__table__.columns
        }

        if include_relationships:
            for relationship in self.__mapper__.relationships:
                related = getattr(self, relationship.key)
                if related is None:
                    result[relationship.key] = None
                elif isinstance(related, list):
                    result[relationship.key] = [item.to_dict() for item in related]
                else:
                    result[relationship.key] = related.to_dict()

        return result

    @validates("uuid")
    def _validate_uuid(self, _key: str, value: Any) -> str:
        # uuid.UUID objects are stored as their canonical string
        return value if value is None else str(value)

    def __repr__(self) -> str:
        parts = []
        if getattr(self, "id", None) is not None:
            parts.append(f"id={self.id}")
        if getattr(self, "name", None) is not None:
            parts.append(f"name='{self.name}'")
        return f"{self.__class__.__name__}({', '.join(parts)})"

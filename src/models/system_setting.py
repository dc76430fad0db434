"""
SystemSetting model: key/value business configuration stored in the database.
"""

from sqlalchemy import Boolean, Column, String, Text
from sqlalchemy.orm import validates

from .base import BaseModel


class SystemSetting(BaseModel):
    """
    A single named setting (e.g. SHIPPING_COST_BASE, TAX_RATE).

    Attributes:
        key: Unique key, stored uppercase
        value: Setting value as text
        description: Optional description
        is_public: Whether the setting may be shown to store users
    """

    __tablename__ = "system_settings"

    key = Column(String(100), nullable=False, unique=True)
    value = Column(Text, nullable=False)
    description = Column(Text, nullable=True)
    is_public = Column(Boolean, nullable=False, default=False)

    @validates("key")
    def _normalize_key(self, _key, value):
        return value.strip().upper() if value else value

    def __repr__(self) -> str:
        """String representation of setting."""
        return f"SystemSetting(key='{self.key}', value='{self.value}')"

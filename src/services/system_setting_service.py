"""
System Setting Service - key/value business settings.

Settings such as SHIPPING_COST_BASE and TAX_RATE are stored as text in the
system_settings table. Keys are case-insensitive and stored uppercase.
"""

from contextlib import nullcontext
from decimal import Decimal, InvalidOperation
from typing import Any, Dict, Optional

from src.models import SystemSetting
from src.services.database import session_scope
from src.services.exceptions import ValidationError
from src.services.logging_utils import get_service_logger, log_operation

logger = get_service_logger(__name__)


def _normalize_key(key: str) -> str:
    key = (key or "").strip().upper()
    if not key:
        raise ValidationError(["Setting key is required"])
    return key


def get_setting(key: str, default: Optional[str] = None, *, session=None) -> Optional[str]:
    """
    Get a setting value.

    Args:
        key: Setting key (case-insensitive)
        default: Value returned when the setting does not exist

    Returns:
        The stored string value, or default
    """
    key = _normalize_key(key)
    cm = nullcontext(session) if session is not None else session_scope()
    with cm as session:
        setting = session.query(SystemSetting).filter(SystemSetting.key == key).first()
        return setting.value if setting is not None else default


def get_decimal_setting(key: str, default: Decimal = Decimal("0"), *, session=None) -> Decimal:
    """
    Get a numeric setting as a Decimal.

    A missing setting yields ``default``. A stored value that is not a
    finite, non-negative number is logged and also yields ``default``.
    """
    raw = get_setting(key, session=session)
    if raw is None or raw.strip() == "":
        return default
    try:
        value = Decimal(raw.strip())
    except InvalidOperation:
        logger.warning(f"Setting {key.upper()} has non-numeric value '{raw}'; using {default}")
        return default
    if not value.is_finite() or value < 0:
        logger.warning(f"Setting {key.upper()} has out-of-range value '{raw}'; using {default}")
        return default
    return value


def set_setting(
    key: str,
    value,
    *,
    description: Optional[str] = None,
    is_public: Optional[bool] = None,
    session=None,
) -> Dict[str, Any]:
    """
    Create or update a setting.

    Returns:
        Dict of the stored setting
    """
    key = _normalize_key(key)
    if value is None:
        raise ValidationError([f"Value for setting {key} is required"])

    cm = nullcontext(session) if session is not None else session_scope()
    with cm as session:
        setting = session.query(SystemSetting).filter(SystemSetting.key == key).first()
        if setting is None:
            setting = SystemSetting(key=key, value=str(value))
            session.add(setting)
        else:
            setting.value = str(value)
        if description is not None:
            setting.description = description
        if is_public is not None:
            setting.is_public = is_public
        session.flush()

        log_operation(logger, operation="set_setting", outcome="success", setting_key=key)
        return setting.to_dict()

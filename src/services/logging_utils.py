"""Structured logging for ledger workflows.

Every service logs through a ``central_kitchen.services.<module>`` logger and
reports each workflow as one "<operation>: <outcome>" record whose ids,
codes and quantities ride along in ``extra``:

    logger = get_service_logger(__name__)

    log_operation(
        logger,
        operation="approve_and_ship",
        outcome="insufficient_stock",
        level=logging.WARNING,
        order_id=7,
        product_sku="MC01",
    )
"""

import logging
from typing import Any

LOGGER_PREFIX = "central_kitchen.services"


def get_service_logger(name: str) -> logging.Logger:
    """
    Return the services logger for a module.

    Only the last dotted component of ``name`` is kept, so
    ``src.services.production_service`` becomes
    ``central_kitchen.services.production_service``.
    """
    return logging.getLogger(f"{LOGGER_PREFIX}.{name.rsplit('.', 1)[-1]}")


def log_operation(
    logger: logging.Logger,
    operation: str,
    outcome: str,
    level: int = logging.INFO,
    **context: Any,
) -> None:
    """
    Emit one record for a workflow outcome.

    Args:
        logger: Logger from get_service_logger()
        operation: Service function name, e.g. "complete_production_line"
        outcome: "success" or the rejection reason, e.g. "insufficient_stock"
        level: INFO for success, WARNING for rejections, CRITICAL for
            ledger inconsistencies
        **context: Ids, codes and quantities. Keys must not shadow LogRecord
            attributes such as "name" or "message".
    """
    logger.log(
        level,
        f"{operation}: {outcome}",
        extra={"operation": operation, "outcome": outcome, **context},
    )

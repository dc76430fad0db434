"""
Constants for the Central Kitchen Ledger application.

This module defines all system-wide constants including:
- Application metadata
- System setting keys read by the fulfillment workflow
- Document code prefixes and payment terms
- Decimal precision for quantities and money
"""

from decimal import Decimal

# ============================================================================
# Application Metadata
# ============================================================================

APP_NAME = "Central Kitchen Ledger"
APP_VERSION = "0.1.0"
DATABASE_FILENAME = "central_kitchen.db"

# ============================================================================
# System Settings
# ============================================================================

# Flat shipping surcharge added to every invoice subtotal
SETTING_SHIPPING_COST = "SHIPPING_COST_BASE"

# Tax rate stored as a fraction ("0.08" for 8%)
SETTING_TAX_RATE = "TAX_RATE"

# ============================================================================
# Document Codes
# ============================================================================

FINISHED_LOT_CODE_PREFIX = "BATCH"
ORDER_CODE_PREFIX = "ORD"
INVOICE_NUMBER_PREFIX = "INV"

# ============================================================================
# Logistics & Billing
# ============================================================================

DEFAULT_DELIVERY_MINUTES = 30
PAYMENT_TERMS_DAYS = 30
DEFAULT_EXPIRING_WITHIN_DAYS = 7

# ============================================================================
# Precision
# ============================================================================

# Quantities are kept at 3 decimal places, money at 2
QUANTITY_PLACES = Decimal("0.001")
MONEY_PLACES = Decimal("0.01")

# ==============================================
# RECORD SOURCES
# ==============================================
#
# - base.py             → RecordSource interface, RecordPage
# - airtable_client.py  → AirtableSource (requests)
#
# ==============================================

from .airtable_client import AirtableSource
from .base import RecordPage, RecordSource

__all__ = ["AirtableSource", "RecordPage", "RecordSource"]

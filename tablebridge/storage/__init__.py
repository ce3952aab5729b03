# ==============================================
# TOPIC 3: RELATIONAL STORAGE
# ==============================================
#
# - base.py          → Storage interface, WriteResult
# - mysql_client.py  → MySQLClient (pymysql)
#
# ==============================================

from .base import Storage, WriteResult
from .mysql_client import MySQLClient

__all__ = ["MySQLClient", "Storage", "WriteResult"]

# ==============================================
# Configuration Management
# ==============================================
#
# PURPOSE:
#   Load and validate all configuration from environment
#   variables / .env file. Provides typed config objects
#   to all other modules.
#
# CLASSES:
# --------
# - MySQLConfig (dataclass)
#     host, port, user, password, database   (target relational store)
#
# - MongoConfig (dataclass)
#     host, port, user, password, database   (session store backend)
#
# - SourceConfig (dataclass)
#     api_token: str        (default "")
#     base_id: str          (default "")
#     base_url: str         (default "https://api.airtable.com/v0")
#     timeout_seconds: int  (default 30)
#     max_retries: int      (default 5)
#
# - ImportConfig (dataclass)
#     page_size: int        (default 100)   records per source page
#     batch_size: int       (default 100)   rows per storage write
#     default_mode: str     (default "upsert")
#     session_backend: str  (default "json")   "json" | "mongo"
#     sessions_dir: str     (default "sessions/")
#
# - AppConfig (dataclass)
#     mysql, mongo, source, imports, thresholds, log_level
#
# FUNCTION:
# ---------
# - get_config() -> AppConfig
#     Load .env using python-dotenv, construct AppConfig.
#     Returns the same singleton on repeated calls.
#
# USAGE:
# ------
#   from tablebridge.config import get_config
#   config = get_config()
#   print(config.mysql.host)
#   print(config.thresholds.reuse_ratio)
#
# ==============================================

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv

from tablebridge.analysis.relationships import CardinalityThresholds


@dataclass
class MySQLConfig:
    """MySQL database configuration."""
    host: str = "localhost"
    port: int = 3306
    user: str = "root"
    password: str = "root"
    database: str = "tablebridge"


@dataclass
class MongoConfig:
    """MongoDB configuration (session store)."""
    host: str = "localhost"
    port: int = 27017
    user: Optional[str] = None
    password: Optional[str] = None
    database: str = "tablebridge"


@dataclass
class SourceConfig:
    """External record API configuration."""
    api_token: str = ""
    base_id: str = ""
    base_url: str = "https://api.airtable.com/v0"
    timeout_seconds: int = 30
    max_retries: int = 5


@dataclass
class ImportConfig:
    """Import engine tuning."""
    page_size: int = 100
    batch_size: int = 100
    default_mode: str = "upsert"
    session_backend: str = "json"
    sessions_dir: str = "sessions/"


@dataclass
class AppConfig:
    """Main application configuration."""
    mysql: MySQLConfig = field(default_factory=MySQLConfig)
    mongo: MongoConfig = field(default_factory=MongoConfig)
    source: SourceConfig = field(default_factory=SourceConfig)
    imports: ImportConfig = field(default_factory=ImportConfig)
    thresholds: CardinalityThresholds = field(default_factory=CardinalityThresholds)
    log_level: str = "INFO"


# Singleton instance
_config_instance: Optional[AppConfig] = None


def get_config() -> AppConfig:
    """
    Load configuration from environment variables / .env file.
    Returns the same singleton instance on repeated calls.

    Returns:
        AppConfig: Application configuration
    """
    global _config_instance

    if _config_instance is not None:
        return _config_instance

    # Load .env file from project root
    env_path = Path(__file__).parent.parent / ".env"
    load_dotenv(dotenv_path=env_path)

    mysql_config = MySQLConfig(
        host=os.getenv("MYSQL_HOST", "localhost"),
        port=int(os.getenv("MYSQL_PORT", "3306")),
        user=os.getenv("MYSQL_USER", "root"),
        password=os.getenv("MYSQL_PASSWORD", "root"),
        database=os.getenv("MYSQL_DATABASE", "tablebridge")
    )

    mongo_config = MongoConfig(
        host=os.getenv("MONGO_HOST", "localhost"),
        port=int(os.getenv("MONGO_PORT", "27017")),
        user=os.getenv("MONGO_USER") or None,
        password=os.getenv("MONGO_PASSWORD") or None,
        database=os.getenv("MONGO_DATABASE", "tablebridge")
    )

    source_config = SourceConfig(
        api_token=os.getenv("AIRTABLE_API_TOKEN", ""),
        base_id=os.getenv("AIRTABLE_BASE_ID", ""),
        base_url=os.getenv("AIRTABLE_BASE_URL", "https://api.airtable.com/v0"),
        timeout_seconds=int(os.getenv("SOURCE_TIMEOUT_SECONDS", "30")),
        max_retries=int(os.getenv("SOURCE_MAX_RETRIES", "5"))
    )

    import_config = ImportConfig(
        page_size=int(os.getenv("IMPORT_PAGE_SIZE", "100")),
        batch_size=int(os.getenv("IMPORT_BATCH_SIZE", "100")),
        default_mode=os.getenv("IMPORT_MODE", "upsert"),
        session_backend=os.getenv("SESSION_BACKEND", "json"),
        sessions_dir=os.getenv("SESSIONS_DIR", "sessions/")
    )

    # Cardinality heuristics; defaults keep the historical behaviour
    thresholds = CardinalityThresholds(
        reuse_ratio=float(os.getenv("REL_REUSE_RATIO", "0.1")),
        one_to_many_confidence=float(os.getenv("REL_ONE_TO_MANY_CONFIDENCE", "0.95")),
        many_to_one_confidence=float(os.getenv("REL_MANY_TO_ONE_CONFIDENCE", "0.85")),
        many_to_many_confidence=float(os.getenv("REL_MANY_TO_MANY_CONFIDENCE", "0.75"))
    )

    _config_instance = AppConfig(
        mysql=mysql_config,
        mongo=mongo_config,
        source=source_config,
        imports=import_config,
        thresholds=thresholds,
        log_level=os.getenv("LOG_LEVEL", "INFO")
    )

    return _config_instance

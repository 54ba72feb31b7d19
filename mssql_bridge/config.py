"""MSSQL Bridge configuration loaded from environment variables."""
import json
import logging
import os
import sys
from dataclasses import dataclass
from pathlib import Path
from typing import Mapping, Optional

from dotenv import load_dotenv

SERVICE_NAME = 'mssql-bridge'

# ============================================================================
# Defaults
# ============================================================================

DEFAULT_PORT = 3000
DEFAULT_DB_PORT = 1433
CONNECT_TIMEOUT_SECONDS = 30
REQUEST_TIMEOUT_SECONDS = 30
POOL_MAX = 10
POOL_MIN = 0
POOL_IDLE_TIMEOUT_SECONDS = 30
MAX_BODY_BYTES = 10 * 1024 * 1024


def _flag(value: Optional[str]) -> bool:
    """Only the literal string "true" switches a flag on."""
    return (value or '').strip().lower() == 'true'


def _int(environ: Mapping[str, str], name: str, default: int) -> int:
    raw = environ.get(name)
    if raw is None or raw.strip() == '':
        return default
    try:
        return int(raw)
    except ValueError:
        raise ValueError(f"{name} must be an integer, got {raw!r}") from None


# ============================================================================
# Settings
# ============================================================================

@dataclass(frozen=True)
class BridgeSettings:
    """Everything the bridge reads from its environment, read once."""

    server: str = 'localhost'
    database: str = ''
    username: str = ''
    password: str = ''
    db_port: int = DEFAULT_DB_PORT
    encrypt: bool = False
    trust_server_certificate: bool = False

    connect_timeout: int = CONNECT_TIMEOUT_SECONDS
    request_timeout: int = REQUEST_TIMEOUT_SECONDS
    pool_max: int = POOL_MAX
    pool_min: int = POOL_MIN
    pool_idle_timeout: int = POOL_IDLE_TIMEOUT_SECONDS

    host: str = '0.0.0.0'
    port: int = DEFAULT_PORT
    environment: str = 'production'
    max_body_bytes: int = MAX_BODY_BYTES
    service_name: str = SERVICE_NAME

    log_level: str = 'INFO'
    log_format: str = 'detailed'
    log_file: str = ''

    @property
    def expose_details(self) -> bool:
        """Stack traces go back to clients outside production."""
        return self.environment != 'production'

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> 'BridgeSettings':
        env = os.environ if environ is None else environ
        return cls(
            server=env.get('MSSQL_SERVER', 'localhost'),
            database=env.get('MSSQL_DATABASE', ''),
            username=env.get('MSSQL_USERNAME', ''),
            password=env.get('MSSQL_PASSWORD', ''),
            db_port=_int(env, 'MSSQL_PORT', DEFAULT_DB_PORT),
            encrypt=_flag(env.get('MSSQL_ENCRYPT')),
            trust_server_certificate=_flag(env.get('MSSQL_TRUST_SERVER_CERTIFICATE')),
            port=_int(env, 'PORT', DEFAULT_PORT),
            environment=(env.get('NODE_ENV') or env.get('BRIDGE_ENV') or 'production').strip().lower(),
            log_level=env.get('LOG_LEVEL', 'INFO').upper(),
            log_format=env.get('LOG_FORMAT', 'detailed'),
            log_file=env.get('LOG_FILE', ''),
        )

    def describe(self) -> str:
        """Connection target without credentials, for log lines."""
        return f"{self.username or '?'}@{self.server}:{self.db_port}/{self.database or '?'}"


def load_settings(env_file: Optional[str] = None) -> BridgeSettings:
    """
    Load a .env file (if present) and build settings from the environment.

    Variables already set in the process environment win over the file.

    Args:
        env_file: Path to a dotenv file. Defaults to ``.env`` in the working directory.
    """
    env_path = Path(env_file) if env_file else Path.cwd() / '.env'
    if env_path.exists():
        load_dotenv(env_path, override=False)
    return BridgeSettings.from_env()


# ============================================================================
# Validation
# ============================================================================

def validate_config(settings: BridgeSettings) -> None:
    """Validate configuration values."""
    errors = []

    if not (0 < settings.port < 65536):
        errors.append("PORT must be between 1 and 65535")

    if not (0 < settings.db_port < 65536):
        errors.append("MSSQL_PORT must be between 1 and 65535")

    if settings.connect_timeout <= 0 or settings.request_timeout <= 0:
        errors.append("connect and request timeouts must be positive")

    if settings.pool_max < 1:
        errors.append("pool max must be at least 1")

    if not (0 <= settings.pool_min <= settings.pool_max):
        errors.append("pool min must be between 0 and pool max")

    if settings.pool_idle_timeout <= 0:
        errors.append("pool idle timeout must be positive")

    if settings.log_format not in ('detailed', 'simple', 'json'):
        errors.append("LOG_FORMAT must be one of detailed, simple, json")

    if errors:
        raise ValueError("Configuration validation failed:\n" + "\n".join(f"  - {e}" for e in errors))


# ============================================================================
# Logging Setup
# ============================================================================

LOG_FORMATS = {
    'detailed': '%(asctime)s - %(name)s - %(levelname)s - %(message)s',
    'simple': '%(levelname)s: %(message)s',
}

QUIET_LOGGERS = ('sqlalchemy.engine', 'urllib3')


class JsonFormatter(logging.Formatter):
    """One JSON object per line; messages are escaped, never spliced."""

    def format(self, record: logging.LogRecord) -> str:
        entry = {
            'timestamp': self.formatTime(record),
            'level': record.levelname,
            'name': record.name,
            'message': record.getMessage(),
        }
        if record.exc_info:
            entry['exc_info'] = self.formatException(record.exc_info)
        return json.dumps(entry, default=str)


def build_formatter(log_format: str) -> logging.Formatter:
    if log_format == 'json':
        return JsonFormatter()
    return logging.Formatter(LOG_FORMATS.get(log_format, LOG_FORMATS['simple']))


def setup_logging(settings: BridgeSettings) -> None:
    """Route bridge logs to stdout (and LOG_FILE when set) at LOG_LEVEL."""
    level = getattr(logging, settings.log_level, logging.INFO)
    formatter = build_formatter(settings.log_format)

    handlers = [logging.StreamHandler(sys.stdout)]
    if settings.log_file:
        handlers.append(logging.FileHandler(settings.log_file))
    for handler in handlers:
        handler.setFormatter(formatter)

    logging.basicConfig(level=level, handlers=handlers, force=True)
    logging.getLogger('mssql_bridge').setLevel(level)

    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

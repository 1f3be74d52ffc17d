# app/core/config.py
import os
import sys
from dotenv import load_dotenv
from loguru import logger
import logging
from pathlib import Path
from typing import List

try:
    project_root = Path(__file__).resolve().parent.parent.parent
    dotenv_path = project_root / '.env'
    logger.debug(f"Calculated .env path using pathlib: {dotenv_path}")
except Exception as e:
    logger.error(f"Error calculating project root/dotenv path: {e}")
    dotenv_path = Path(".env") # Asumsi .env ada di direktori kerja
    logger.warning(f"Using fallback .env path: {dotenv_path.resolve()}")

# --- Muat file .env JIKA ADA ---
if dotenv_path.is_file():
    logger.info(f"Loading environment variables from: {dotenv_path}")
    load_dotenv(dotenv_path=dotenv_path, override=False)
else:
    logger.warning(f".env file not found at {dotenv_path}. Relying on system environment variables.")


class InterceptHandler(logging.Handler):
    """Handler untuk mencegat log standar Python dan mengarahkannya ke Loguru."""
    def emit(self, record: logging.LogRecord) -> None:
        try: level = logger.level(record.levelname).name
        except ValueError: level = record.levelno
        frame, depth = logging.currentframe(), 2
        while frame and frame.f_code.co_filename == logging.__file__:
            frame = frame.f_back
            depth += 1
        logger.opt(depth=depth, exception=record.exc_info).log(level, record.getMessage())


def setup_logging():
    """Konfigurasi Loguru untuk aplikasi (console + file berotasi)."""
    log_level_name = os.getenv("LOG_LEVEL", "INFO").upper()

    log_format = (
        "<green>{time:YYYY-MM-DD HH:mm:ss.SSS}</green> | "
        "<level>{level: <8}</level> | "
        "<cyan>{name}</cyan>:<cyan>{function}</cyan>:<cyan>{line}</cyan> - <level>{message}</level>"
    )
    log_file_path = Path(os.getenv("LOG_FILE_PATH", "logs/loan_service_{time:YYYY-MM-DD}.log"))
    log_rotation = os.getenv("LOG_ROTATION", "1 day")
    log_retention = os.getenv("LOG_RETENTION", "7 days")
    log_serialize = os.getenv("LOG_SERIALIZE", "False").lower() == 'true'

    logger.remove() # Hapus handler default

    logger.add(sys.stderr, level=log_level_name, format=log_format, colorize=True)

    try:
        log_file_path.parent.mkdir(parents=True, exist_ok=True)
        logger.add(
            log_file_path,
            level=log_level_name,
            format=log_format,
            rotation=log_rotation,
            retention=log_retention,
            serialize=log_serialize,
            enqueue=True,
            backtrace=True,
            diagnose=False,
            encoding="utf-8"
        )
        logger.info(f"File logging enabled at: {log_file_path}")
    except OSError as e:
        logger.error(f"Failed to setup file logging at {log_file_path}: {e}")

    # --- Intercept Log Standar ---
    # Modul core memakai logging.getLogger(__name__); semuanya diteruskan ke Loguru.
    logging.basicConfig(handlers=[InterceptHandler()], level=0, force=True)
    for name in list(logging.root.manager.loggerDict):
        if name.startswith(("uvicorn", "fastapi", "starlette")):
            existing_logger = logging.getLogger(name)
            existing_logger.handlers = [InterceptHandler()]
            existing_logger.propagate = False

    logger.info(f"Loguru logging setup complete. Level: {log_level_name}")


def _env_bool(name: str, default: str) -> bool:
    return os.getenv(name, default).strip().lower() in ("1", "true", "yes", "on")


# --- JWT Configuration ---
SECRET_KEY: str = os.getenv("SECRET_KEY")
if not SECRET_KEY:
    logger.critical("FATAL: SECRET_KEY environment variable is not set.")
    raise ValueError("SECRET_KEY environment variable is not set.")

ALGORITHM: str = os.getenv("ALGORITHM", "HS256")
try:
    ACCESS_TOKEN_EXPIRE_MINUTES: int = int(os.getenv("ACCESS_TOKEN_EXPIRE_MINUTES", "60"))
except ValueError:
    logger.warning("Invalid ACCESS_TOKEN_EXPIRE_MINUTES. Using default: 60.")
    ACCESS_TOKEN_EXPIRE_MINUTES = 60

# --- Database Configuration ---
MONGODB_URL: str = os.getenv("MONGODB_URL")
if not MONGODB_URL:
    logger.critical("FATAL: MONGODB_URL environment variable is not set.")
    raise ValueError("MONGODB_URL environment variable is not set.")

_default_db_name = "school_loans"
_path_part = MONGODB_URL.rsplit('/', 1)[-1].split('?')[0]
if _path_part and "://" in MONGODB_URL and MONGODB_URL.count('/') > 2:
    _default_db_name = _path_part
DATABASE_NAME: str = os.getenv("DATABASE_NAME", _default_db_name)

# Multi-document transaction butuh replica set; tanpa itu workflow memakai kompensasi.
MONGODB_TRANSACTIONS: bool = _env_bool("MONGODB_TRANSACTIONS", "false")

# --- Workflow Configuration ---
APP_TIMEZONE: str = os.getenv("APP_TIMEZONE", "Asia/Jakarta")
LETTER_FALLBACK_DEPARTMENT_CODE: str = os.getenv("LETTER_FALLBACK_DEPARTMENT_CODE", "UMUM")

# --- HTTP Configuration ---
RATE_LIMIT_ENABLED: bool = _env_bool("RATE_LIMIT_ENABLED", "true")
CORS_ORIGINS: List[str] = [o.strip() for o in os.getenv("CORS_ORIGINS", "").split(",") if o.strip()]


logger.info(f"JWT Algorithm: {ALGORITHM}")
logger.info(f"Access Token Expire Minutes: {ACCESS_TOKEN_EXPIRE_MINUTES}")
logger.info(f"Database Name: {DATABASE_NAME} (transactions: {MONGODB_TRANSACTIONS})")

import logging
import os
from pathlib import Path

from dotenv import load_dotenv

logging.basicConfig(level=logging.INFO, format="%(asctime)s - %(levelname)s - %(message)s")
logger = logging.getLogger(__name__)


def initialize_server() -> None:
    """Load the service .env file so configuration reads see it."""
    service_root = Path(__file__).resolve().parents[1]
    env_path = service_root / ".env"
    load_dotenv(dotenv_path=env_path, override=True)
    logger.info("Loaded .env file from %s", env_path)
    logger.info(
        "Weather env vars present: db_host=%s db_password=%s secrets_dir=%s telegram_token=%s",
        bool(os.getenv("WEATHER_DB_HOST")),
        bool(os.getenv("WEATHER_DB_PASSWORD")),
        bool(os.getenv("WEATHER_SECRETS_DIR")),
        bool(os.getenv("TELEGRAM_BOT_TOKEN")),
    )
    logger.info("Server initialized successfully.")

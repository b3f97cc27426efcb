"""Create the subscription tables, waiting for the database to accept connections."""

import logging
import time

from sqlalchemy.exc import OperationalError

from core.env import env_int
from database import init_db as create_tables

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

ATTEMPTS = env_int("DB_BOOTSTRAP_ATTEMPTS", 7, minimum=1)
WAIT_SECONDS = 3.0


def init_db() -> None:
    attempt = 1
    while True:
        try:
            create_tables()
            break
        except OperationalError as exc:
            if attempt >= ATTEMPTS:
                raise
            logger.warning("Database unavailable (attempt %d/%d), retrying in %.0fs: %s", attempt, ATTEMPTS, WAIT_SECONDS, exc)
            attempt += 1
            time.sleep(WAIT_SECONDS)
    logger.info("subscriptions and paypal_webhook_events are ready.")


if __name__ == "__main__":
    init_db()

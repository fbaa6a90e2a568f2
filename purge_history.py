import logging
from datetime import datetime, timedelta, timezone

from config import DATABASE_URL, HISTORY_MAX_AGE_HOURS
from database import make_engine
from models import User
from sql_storage import SQLStorage

logger = logging.getLogger(__name__)


def main() -> None:
    """
    Sweep expired history records for every user in the server database.

    Records are never removed on a timer; this one-off maintenance script
    runs the same sweep the cleanup endpoint does, once per user.
    """
    logging.basicConfig(level=logging.INFO, format="%(asctime)s [%(levelname)s] %(name)s: %(message)s")
    storage = SQLStorage(make_engine(DATABASE_URL))
    now = datetime.now(timezone.utc)
    max_age = timedelta(hours=HISTORY_MAX_AGE_HOURS)

    db = storage.SessionLocal()
    try:
        user_ids = [str(row[0]) for row in db.query(User.id).all()]
    finally:
        db.close()

    total = 0
    for user_id in user_ids:
        total += storage.sweep_expired_history(user_id, max_age, now)
    logger.info("Deleted %d expired history records across %d users.", total, len(user_ids))


if __name__ == "__main__":
    main()

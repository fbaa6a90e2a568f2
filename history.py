import logging
import uuid
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, List, Optional

from config import HISTORY_MAX_AGE_HOURS, HISTORY_RETURN_LIMIT
from errors import CapacityExceeded, NotFound, ValidationError
from storage import HistoryEntry, StorageAdapter
from validation import validate_analysis_result

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class HistoryStore:
    """
    Capacity and expiry policy for analysis history. The only writer of
    history records.

    ``compressor`` is applied to both images before they are stored
    (embedded mode shrinks them to thumbnails); ``clock`` exists so age
    based behaviour can be exercised without waiting a day.
    """

    def __init__(
        self,
        storage: StorageAdapter,
        capacity: int,
        return_limit: int = HISTORY_RETURN_LIMIT,
        max_age: timedelta = timedelta(hours=HISTORY_MAX_AGE_HOURS),
        compressor: Optional[Callable[[str], str]] = None,
        clock: Callable[[], datetime] = _utcnow,
    ):
        self.storage = storage
        self.capacity = capacity
        self.return_limit = return_limit
        self.max_age = max_age
        self.compressor = compressor
        self.clock = clock

    def add(self, user_id: str, image_data: str, analysis_image: Optional[str], result: Any) -> HistoryEntry:
        if not image_data or result is None:
            raise ValidationError("Incomplete data: image and result are required.")
        result = validate_analysis_result(result)

        # Check-then-insert: concurrent writers for one account can both
        # pass the check.
        if self.storage.count_history(user_id) >= self.capacity:
            raise CapacityExceeded(self.capacity)

        analysis_image = analysis_image or ""
        if self.compressor is not None:
            image_data = self.compressor(image_data)
            analysis_image = self.compressor(analysis_image)

        entry = HistoryEntry(
            id=uuid.uuid4().hex,
            user_id=user_id,
            image_data=image_data,
            analysis_image=analysis_image,
            result=result,
            created_at=self.clock(),
        )
        stored = self.storage.insert_history(user_id, entry)
        logger.debug("Stored history record %s for user %s", stored.id, user_id)
        return stored

    def list(self, user_id: str) -> List[HistoryEntry]:
        return self.storage.list_history(user_id, self.return_limit)

    def get(self, user_id: str, record_id: str) -> HistoryEntry:
        entry = self.storage.get_history(user_id, record_id)
        if entry is None:
            raise NotFound()
        return entry

    def delete(self, user_id: str, record_id: str) -> bool:
        return self.storage.delete_history(user_id, record_id)

    def sweep(self, user_id: str) -> int:
        """Delete every record at least ``max_age`` old; return the count."""
        deleted = self.storage.sweep_expired_history(user_id, self.max_age, self.clock())
        if deleted:
            logger.info("Swept %d expired history records for user %s", deleted, user_id)
        return deleted

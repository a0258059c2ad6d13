from datetime import datetime
from typing import Callable, Optional, Sequence

from sqlalchemy.orm import Session

from app.domain.models import DeliveryPerson, utcnow
from app.infrastructure.directory import DeliveryPersonDirectory
from shared.core import get_logger

logger = get_logger(__name__)

SelectionStrategy = Callable[[Sequence[DeliveryPerson]], Optional[DeliveryPerson]]


def least_recently_assigned(candidates: Sequence[DeliveryPerson]) -> Optional[DeliveryPerson]:
    """Oldest last assignment wins; never-assigned first, ties broken by id."""
    if not candidates:
        return None
    return min(candidates, key=lambda p: (p.last_assigned_at is not None, p.last_assigned_at or datetime.min, p.id))


class DeliveryAssigner:
    def __init__(self, db: Session, strategy: SelectionStrategy = least_recently_assigned):
        self.db = db
        self.directory = DeliveryPersonDirectory(db)
        self.strategy = strategy
        # delivery person id -> (previous stamp, stamp written by this assigner)
        self.stamps: dict[str, tuple[Optional[datetime], datetime]] = {}

    def assign_for_pincode(self, pincode: str) -> Optional[DeliveryPerson]:
        """Pick and stamp a delivery person for ``pincode``.

        Best effort: returns None when nobody services the pincode or the
        lookup fails, so order placement can carry on unassigned.
        """
        try:
            candidates = self.directory.active_for_pincode(str(pincode))
            chosen = self.strategy(candidates)
            if chosen is None:
                logger.info(
                    "No delivery person available",
                    extra={'extra_fields': {'pincode': pincode, 'operation': 'assign_delivery_person'}}
                )
                return None
            now = utcnow()
            previous = chosen.last_assigned_at
            self.directory.stamp_assignment(chosen.id, now)
            self.stamps[chosen.id] = (previous, now)
            chosen.last_assigned_at = now
        except Exception:
            self.db.rollback()
            logger.warning(
                "Delivery person lookup failed",
                exc_info=True,
                extra={'extra_fields': {'pincode': pincode, 'operation': 'assign_delivery_person'}}
            )
            return None

        logger.info(
            "Delivery person selected",
            extra={'extra_fields': {'pincode': pincode, 'delivery_person_id': chosen.id}}
        )
        return chosen

    def release(self, delivery_person_id: str) -> None:
        """Undo this assigner's stamp for an order that will never be delivered.

        Runs inside the caller's transaction; the caller commits.
        """
        stamp = self.stamps.pop(delivery_person_id, None)
        if stamp is None:
            return
        previous, stamped_at = stamp
        self.directory.restore_assignment(delivery_person_id, stamped_at, previous)
        logger.info(
            "Delivery person released",
            extra={'extra_fields': {'delivery_person_id': delivery_person_id, 'operation': 'release_delivery_person'}}
        )

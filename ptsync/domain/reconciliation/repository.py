"""Tracked remote id repository - ids seen in the last reconciliation per owner key"""

from sqlalchemy.orm import Session

from ...models import TrackedRemoteIdSet
from ...shared.time_utils import utcnow
from ..sync_queue.schemas import EntityKind


class TrackedIdRepository:
    """Repository for tracked remote id sets"""

    @staticmethod
    def read(db: Session, owner_key: str, entity_kind: EntityKind) -> set[str]:
        """Ids tracked for an owner key; empty before the first reconciliation"""
        row = (
            db.query(TrackedRemoteIdSet)
            .filter(
                TrackedRemoteIdSet.owner_key == owner_key,
                TrackedRemoteIdSet.entity_kind == EntityKind(entity_kind).value,
            )
            .first()
        )
        if row is None or not isinstance(row.ids, list):
            return set()
        return {value.strip() for value in row.ids if isinstance(value, str) and value.strip()}

    @staticmethod
    def replace(
        db: Session, owner_key: str, entity_kind: EntityKind, ids: set[str], commit: bool = True
    ) -> None:
        """Overwrite the whole tracked set"""
        row = (
            db.query(TrackedRemoteIdSet)
            .filter(
                TrackedRemoteIdSet.owner_key == owner_key,
                TrackedRemoteIdSet.entity_kind == EntityKind(entity_kind).value,
            )
            .first()
        )
        if row is None:
            row = TrackedRemoteIdSet(owner_key=owner_key, entity_kind=EntityKind(entity_kind).value)
            db.add(row)

        row.ids = sorted(ids)
        row.updated_at = utcnow()

        if commit:
            db.commit()
        else:
            db.flush()

"""
Persistence sync for repaired and imported items.

The QA engine never owns storage: it hands finished documents to a
VaultStore, one call per item. Bulk operations keep going past individual
failures and report an aggregate count.
"""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from vaultqa.models.models import VaultItem
from vaultqa.services.item_model import ItemReport, as_dict, canonical_difficulty, is_blank

logger = logging.getLogger(__name__)

SYNC_ERRORS = (SQLAlchemyError, ValueError)


class VaultStore(ABC):
    """Keyed document store: upsert by id, delete by id."""

    @abstractmethod
    def upsert(self, item: Dict[str, Any], report: Optional[ItemReport] = None) -> None:
        ...

    @abstractmethod
    def delete(self, item_id: str) -> bool:
        """Returns False when the id is unknown."""

    @abstractmethod
    def get(self, item_id: str) -> Optional[Dict[str, Any]]:
        ...

    @abstractmethod
    def list_items(self) -> List[Dict[str, Any]]:
        ...

    def record_report(self, report: ItemReport) -> None:
        """Store the latest QA result for an item, where the backend supports it."""

    def rollback(self) -> None:
        """Discard a failed call's partial work."""


class SqlVaultStore(VaultStore):
    """VaultStore over the vault_items table."""

    def __init__(self, db: Session):
        self.db = db

    def upsert(self, item: Dict[str, Any], report: Optional[ItemReport] = None) -> None:
        if not isinstance(item, dict) or is_blank(item.get("id")) or not isinstance(item.get("id"), str):
            raise ValueError("Item must be an object with a non-empty string id")

        row = self.db.get(VaultItem, item["id"])
        if row is None:
            row = VaultItem(id=item["id"])
            self.db.add(row)

        pedagogy = as_dict(item.get("pedagogy"))
        row.type = item.get("type") if isinstance(item.get("type"), str) else None
        row.item_data = item
        row.topic_tags = pedagogy.get("topicTags") if isinstance(pedagogy.get("topicTags"), list) else None
        row.nclex_category = pedagogy.get("nclexCategory") if isinstance(pedagogy.get("nclexCategory"), str) else None
        row.difficulty = canonical_difficulty(pedagogy.get("difficulty"))
        row.updated_at = datetime.utcnow()
        if report is not None:
            row.qa_score = report.score
            row.qa_verdict = report.verdict.value

        self.db.commit()

    def delete(self, item_id: str) -> bool:
        row = self.db.get(VaultItem, item_id)
        if row is None:
            return False
        self.db.delete(row)
        self.db.commit()
        return True

    def get(self, item_id: str) -> Optional[Dict[str, Any]]:
        row = self.db.get(VaultItem, item_id)
        return row.item_data if row is not None else None

    def list_items(self) -> List[Dict[str, Any]]:
        return [row.item_data for row in self.db.query(VaultItem).order_by(VaultItem.id).all()]

    def record_report(self, report: ItemReport) -> None:
        row = self.db.get(VaultItem, report.item_id)
        if row is None:
            return
        row.qa_score = report.score
        row.qa_verdict = report.verdict.value
        self.db.commit()

    def rollback(self) -> None:
        self.db.rollback()


@dataclass
class SyncReport:
    succeeded: int = 0
    failed: int = 0
    errors: List[Dict[str, str]] = field(default_factory=list)

    def record_failure(self, item_id: Any, error: Exception) -> None:
        self.failed += 1
        self.errors.append({"id": str(item_id), "error": str(error)})


def sync_items(store: VaultStore, items: Iterable[Any], reports: Optional[Dict[str, ItemReport]] = None) -> SyncReport:
    """Upsert items one by one; a failing item is rolled back and skipped."""
    result = SyncReport()
    for item in items:
        item_id = item.get("id") if isinstance(item, dict) else None
        try:
            store.upsert(item, (reports or {}).get(item_id))
            result.succeeded += 1
        except SYNC_ERRORS as e:
            logger.error(f"Failed to sync item {item_id}: {e}")
            store.rollback()
            result.record_failure(item_id, e)

    logger.info(f"Vault sync: {result.succeeded} upserted, {result.failed} failed")
    return result


def delete_items(store: VaultStore, item_ids: Iterable[str]) -> SyncReport:
    """Delete items one by one; unknown ids count as failures."""
    result = SyncReport()
    for item_id in item_ids:
        try:
            if store.delete(item_id):
                result.succeeded += 1
            else:
                result.record_failure(item_id, ValueError("Item not found"))
        except SYNC_ERRORS as e:
            logger.error(f"Failed to delete item {item_id}: {e}")
            store.rollback()
            result.record_failure(item_id, e)

    logger.info(f"Vault delete: {result.succeeded} deleted, {result.failed} failed")
    return result

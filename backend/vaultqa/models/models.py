from sqlalchemy import Column, String, Integer, Float, Boolean, DateTime, JSON
from datetime import datetime
import uuid
from vaultqa.database import Base


def generate_uuid():
    return str(uuid.uuid4())


class VaultItem(Base):
    """
    One exam item document in the vault, keyed by its item id.

    The full document lives in item_data; the other columns are copies of
    fields the admin UI filters on, refreshed on every upsert.
    """
    __tablename__ = "vault_items"

    id = Column(String, primary_key=True)
    type = Column(String, nullable=True, index=True)
    item_data = Column(JSON, nullable=False)

    # Denormalised pedagogy
    topic_tags = Column(JSON, nullable=True)
    nclex_category = Column(String, nullable=True, index=True)
    difficulty = Column(Integer, nullable=True)

    # Last QA result
    qa_score = Column(Float, nullable=True)
    qa_verdict = Column(String, nullable=True, index=True)  # pass, warn, fail

    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)


class RepairLog(Base):
    """
    Audit trail of deterministic and deep repairs.
    Used to track which fixes were applied and whether they improved the score.
    """
    __tablename__ = "repair_logs"

    id = Column(String, primary_key=True, default=generate_uuid)
    item_id = Column(String, nullable=False, index=True)
    kind = Column(String, nullable=False, index=True)  # deterministic, deep

    # Human-readable change list (JSON array of strings)
    changes = Column(JSON, nullable=True)

    score_before = Column(Float, nullable=True)
    score_after = Column(Float, nullable=True)
    success = Column(Boolean, default=True)
    error = Column(String, nullable=True)

    created_at = Column(DateTime, default=datetime.utcnow, index=True)

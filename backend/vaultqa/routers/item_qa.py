"""
Item QA API Router

Provides endpoints for:
- Importing and deleting vault items
- Full-bank QA scans and filtered item reports
- Deterministic and AI-assisted deep repair
- CSV export of the last bank report
"""

import logging
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from fastapi.responses import PlainTextResponse
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from vaultqa.database import get_db
from vaultqa.models.models import RepairLog
from vaultqa.services.batch_scanner import BatchScanner
from vaultqa.services.credential_pool import CredentialPool
from vaultqa.services.deep_repairer import DeepRepairer, DeepRepairService
from vaultqa.services.deterministic_repairer import RepairResult, repair_bank
from vaultqa.services.item_model import Dimension, ItemReport, Verdict
from vaultqa.services.item_qa import run_item_qa
from vaultqa.services.qa_export import bank_report_to_csv
from vaultqa.services.vault_sync import SqlVaultStore, delete_items, sync_items

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/item-qa", tags=["item-qa"])

_scanner: Optional[BatchScanner] = None
_deep_service: Optional[DeepRepairService] = None


def get_scanner() -> BatchScanner:
    """Process-wide scanner; holds the last bank report."""
    global _scanner
    if _scanner is None:
        _scanner = BatchScanner()
    return _scanner


def get_deep_repair_service() -> DeepRepairService:
    global _deep_service
    if _deep_service is None:
        try:
            pool = CredentialPool.from_env()
        except ValueError as e:
            raise HTTPException(status_code=503, detail=str(e))
        _deep_service = DeepRepairService(DeepRepairer(pool))
    return _deep_service


def reset_state() -> None:
    """Drop the scanner and deep-repair service (used by tests)."""
    global _scanner, _deep_service
    _scanner = None
    _deep_service = None


# =========================================================================
# Request / Response Models
# =========================================================================

class ImportItemsRequest(BaseModel):
    items: List[Dict[str, Any]] = Field(..., min_length=1)


class SyncResponse(BaseModel):
    succeeded: int
    failed: int
    errors: List[Dict[str, str]]


class DiagnosticResponse(BaseModel):
    dimension: str
    severity: str
    code: str
    message: str
    field: Optional[str] = None


class ItemReportResponse(BaseModel):
    item_id: str
    item_type: str
    score: float
    verdict: str
    dimension_scores: Dict[str, float]
    diagnostics: List[DiagnosticResponse]
    checked_at: str


class BankSummaryResponse(BaseModel):
    total_items: int
    passed: int
    warned: int
    failed: int
    overall_score: float
    dimension_summary: Dict[str, Dict[str, int]]
    type_distribution: Dict[str, int]
    checked_at: str


class ReportListResponse(BaseModel):
    total: int
    limit: int
    offset: int
    reports: List[ItemReportResponse]


class RepairRequest(BaseModel):
    item_ids: Optional[List[str]] = None
    persist: bool = False


class DeepRepairRequest(BaseModel):
    item_ids: List[str] = Field(..., min_length=1)
    persist: bool = False


class ItemRepairResponse(BaseModel):
    item_id: str
    changes: List[str]
    score_before: float
    score_after: float
    verdict: str
    success: bool = True
    error: Optional[str] = None
    item: Any = None


class RepairResponse(BaseModel):
    repaired: int
    total_changes: int
    results: List[ItemRepairResponse]
    sync: Optional[SyncResponse] = None


# =========================================================================
# Helpers
# =========================================================================

def _load_items(store: SqlVaultStore, item_ids: Optional[List[str]]) -> List[Dict[str, Any]]:
    if not item_ids:
        return store.list_items()
    items = []
    for item_id in item_ids:
        item = store.get(item_id)
        if item is None:
            raise HTTPException(status_code=404, detail=f"Item not found: {item_id}")
        items.append(item)
    return items


def _log_repair(db: Session, item_id: str, kind: str, changes: List[str], before: float,
                after: float, success: bool = True, error: Optional[str] = None) -> None:
    db.add(RepairLog(
        item_id=item_id,
        kind=kind,
        changes=changes,
        score_before=before,
        score_after=after,
        success=success,
        error=error,
    ))


def _sync_response(result) -> SyncResponse:
    return SyncResponse(succeeded=result.succeeded, failed=result.failed, errors=result.errors)


# =========================================================================
# Item Endpoints
# =========================================================================

@router.post("/items", response_model=SyncResponse)
async def import_items(request: ImportItemsRequest, db: Session = Depends(get_db)):
    """
    Import (upsert) item documents into the vault.

    Each item is QA-checked on the way in so its score and verdict are
    filterable immediately. Invalid items are reported, not fatal.
    """
    store = SqlVaultStore(db)
    reports = {
        item["id"]: run_item_qa(item)
        for item in request.items
        if isinstance(item.get("id"), str)
    }
    return _sync_response(sync_items(store, request.items, reports))


@router.delete("/items/{item_id}")
async def delete_item(item_id: str, db: Session = Depends(get_db)):
    """Delete one item from the vault."""
    result = delete_items(SqlVaultStore(db), [item_id])
    if result.succeeded == 0:
        raise HTTPException(status_code=404, detail="Item not found")
    return {"deleted": item_id}


# =========================================================================
# Scan / Report Endpoints
# =========================================================================

@router.post("/scan", response_model=BankSummaryResponse)
async def scan_bank(db: Session = Depends(get_db), scanner: BatchScanner = Depends(get_scanner)):
    """
    Run a full-bank QA scan over every stored item.

    A scan started while another is running supersedes it; the superseded
    request gets 409. Item scores and verdicts are written back to the vault.
    """
    store = SqlVaultStore(db)
    report = await scanner.scan(store.list_items())
    if report is None:
        raise HTTPException(status_code=409, detail="Scan superseded by a newer scan")

    for item_report in report.item_reports:
        store.record_report(item_report)
    return report.to_dict(include_items=False)


@router.get("/reports", response_model=ReportListResponse)
async def list_reports(
    verdict: Optional[Verdict] = Query(None, description="Filter by verdict"),
    dimension: Optional[Dimension] = Query(None, description="Only items with diagnostics in this dimension"),
    item_type: Optional[str] = Query(None, description="Filter by item type"),
    sort_by: str = Query("score", description="Sort: score, id, diagnostic_count"),
    descending: bool = Query(False),
    limit: int = Query(50, ge=1, le=500),
    offset: int = Query(0, ge=0),
    scanner: BatchScanner = Depends(get_scanner),
):
    """
    Filter and sort the item reports of the last scan.
    """
    if scanner.last_report is None:
        raise HTTPException(status_code=404, detail="No scan has been run yet")

    sort_keys = {
        "score": lambda r: (r.score, r.item_id),
        "id": lambda r: r.item_id,
        "diagnostic_count": lambda r: (len(r.diagnostics), r.item_id),
    }
    if sort_by not in sort_keys:
        raise HTTPException(status_code=400, detail="Invalid sort_by value")

    reports: List[ItemReport] = scanner.last_report.item_reports
    if verdict is not None:
        reports = [r for r in reports if r.verdict == verdict]
    if dimension is not None:
        reports = [r for r in reports if r.diagnostics_for(dimension)]
    if item_type is not None:
        reports = [r for r in reports if r.item_type == item_type]

    reports = sorted(reports, key=sort_keys[sort_by], reverse=descending)
    page = reports[offset:offset + limit]
    return {
        "total": len(reports),
        "limit": limit,
        "offset": offset,
        "reports": [r.to_dict() for r in page],
    }


@router.get("/reports/{item_id}", response_model=ItemReportResponse)
async def get_item_report(item_id: str, db: Session = Depends(get_db)):
    """Recompute the QA report of one stored item."""
    item = SqlVaultStore(db).get(item_id)
    if item is None:
        raise HTTPException(status_code=404, detail="Item not found")
    return run_item_qa(item).to_dict()


# =========================================================================
# Repair Endpoints
# =========================================================================

@router.post("/repair/deterministic", response_model=RepairResponse)
async def repair_deterministic(request: RepairRequest, db: Session = Depends(get_db)):
    """
    Apply rule-derivable fixes to selected items (all items when none given).

    Every repair is logged; repaired documents are written back only when
    persist is set.
    """
    store = SqlVaultStore(db)
    items = _load_items(store, request.item_ids)
    before = [run_item_qa(item) for item in items]

    results: List[RepairResult] = []
    batch = repair_bank(items, results)

    responses = []
    for previous, result in zip(before, results):
        _log_repair(db, previous.item_id, "deterministic", result.changes, previous.score, result.report.score)
        responses.append(ItemRepairResponse(
            item_id=result.report.item_id,
            changes=result.changes,
            score_before=previous.score,
            score_after=result.report.score,
            verdict=result.report.verdict.value,
            item=result.item,
        ))
    db.commit()

    sync = None
    if request.persist:
        reports = {r.item_id: r for r in batch.reports}
        sync = _sync_response(sync_items(store, batch.items, reports))

    return RepairResponse(repaired=len(items), total_changes=batch.total_changes, results=responses, sync=sync)


@router.post("/repair/deep", response_model=RepairResponse)
async def repair_deep(
    request: DeepRepairRequest,
    db: Session = Depends(get_db),
    service: DeepRepairService = Depends(get_deep_repair_service),
):
    """
    Send selected items and their diagnostics to the generative service.

    Failed repairs come back with success=false and the original item; they
    never fail the request. 503 when no API key is configured, 409 when a
    newer deep-repair run superseded this one.
    """
    store = SqlVaultStore(db)
    items = _load_items(store, request.item_ids)
    before = [run_item_qa(item) for item in items]

    batch = await service.run(items)
    if batch is None:
        raise HTTPException(status_code=409, detail="Deep repair superseded by a newer run")

    responses = []
    for previous, result in zip(before, batch.results):
        _log_repair(db, previous.item_id, "deep", result.changes, previous.score,
                    result.report.score, success=result.success, error=result.error)
        responses.append(ItemRepairResponse(
            item_id=previous.item_id,
            changes=result.changes,
            score_before=previous.score,
            score_after=result.report.score,
            verdict=result.report.verdict.value,
            success=result.success,
            error=result.error,
            item=result.item,
        ))
    db.commit()

    sync = None
    if request.persist:
        repaired = [r for r in batch.results if r.success]
        reports = {r.report.item_id: r.report for r in repaired}
        sync = _sync_response(sync_items(store, [r.item for r in repaired], reports))

    return RepairResponse(
        repaired=batch.succeeded,
        total_changes=sum(len(r.changes) for r in batch.results),
        results=responses,
        sync=sync,
    )


# =========================================================================
# Export Endpoints
# =========================================================================

@router.get("/export", response_class=PlainTextResponse)
async def export_report(scanner: BatchScanner = Depends(get_scanner)):
    """Download the last bank report as CSV (id, type, score, verdict, diagnostic_count)."""
    if scanner.last_report is None:
        raise HTTPException(status_code=404, detail="No scan has been run yet")
    return PlainTextResponse(
        bank_report_to_csv(scanner.last_report),
        media_type="text/csv",
        headers={"Content-Disposition": "attachment; filename=item_qa_report.csv"},
    )

from __future__ import annotations

from datetime import datetime

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session

from ..core.clock import to_naive_utc
from ..core.security import Identity
from ..crud.sales import create_sale, delete_sale, delete_sales, get_sale, list_sales, update_sale_notes
from ..db.session import get_db
from ..deps.auth import require_identity
from ..schemas.inventory import DeletedCount
from ..schemas.sale import SaleBulkDelete, SaleCreate, SaleNotesUpdate, SaleOut

router = APIRouter(prefix="/api/sales", tags=["sales"])


@router.get("", response_model=list[SaleOut])
def api_list(
    start: datetime | None = None,
    end: datetime | None = None,
    limit: int = 1000,
    offset: int = 0,
    identity: Identity = Depends(require_identity),
    db: Session = Depends(get_db),
):
    sales = list_sales(
        db,
        identity.id,
        start=to_naive_utc(start) if start else None,
        end=to_naive_utc(end) if end else None,
        limit=limit,
        offset=offset,
    )
    return [SaleOut.from_sale(sale) for sale in sales]


@router.post("", response_model=SaleOut)
def api_create(payload: SaleCreate, identity: Identity = Depends(require_identity), db: Session = Depends(get_db)):
    # SaleRejected propagates to its registered handler (400/404).
    sale = create_sale(db, identity.id, payload.to_payload(), inventory_action=payload.inventory_action)
    return SaleOut.from_sale(sale)


@router.post("/bulk-delete", response_model=DeletedCount)
def api_bulk_delete(payload: SaleBulkDelete, identity: Identity = Depends(require_identity), db: Session = Depends(get_db)):
    deleted = delete_sales(db, identity.id, ids=payload.ids, start=payload.start, end=payload.end)
    return DeletedCount(deleted=deleted)


@router.get("/{sale_id}", response_model=SaleOut)
def api_get(sale_id: str, identity: Identity = Depends(require_identity), db: Session = Depends(get_db)):
    sale = get_sale(db, identity.id, sale_id)
    if not sale:
        raise HTTPException(404, "Not found")
    return SaleOut.from_sale(sale)


@router.patch("/{sale_id}", response_model=SaleOut)
def api_update_notes(
    sale_id: str,
    payload: SaleNotesUpdate,
    identity: Identity = Depends(require_identity),
    db: Session = Depends(get_db),
):
    sale = get_sale(db, identity.id, sale_id)
    if not sale:
        raise HTTPException(404, "Not found")
    return SaleOut.from_sale(update_sale_notes(db, sale, payload.notes))


@router.delete("/{sale_id}")
def api_delete(sale_id: str, identity: Identity = Depends(require_identity), db: Session = Depends(get_db)):
    sale = get_sale(db, identity.id, sale_id)
    if not sale:
        raise HTTPException(404, "Not found")
    delete_sale(db, sale)
    return {"status": "deleted"}

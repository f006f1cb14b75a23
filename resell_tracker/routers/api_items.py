from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session

from ..core.security import Identity
from ..crud.inventory import create_item, delete_item, delete_items, get_item, list_items, update_item
from ..db.session import get_db
from ..deps.auth import require_identity
from ..schemas.inventory import DeletedCount, IdList, ItemCreate, ItemOut, ItemUpdate

router = APIRouter(prefix="/api/items", tags=["items"])


@router.get("", response_model=list[ItemOut])
def api_list(
    limit: int = 500,
    offset: int = 0,
    identity: Identity = Depends(require_identity),
    db: Session = Depends(get_db),
):
    return [ItemOut.from_item(item) for item in list_items(db, identity.id, limit=limit, offset=offset)]


@router.post("", response_model=ItemOut)
def api_create(payload: ItemCreate, identity: Identity = Depends(require_identity), db: Session = Depends(get_db)):
    try:
        item = create_item(db, identity.id, payload.to_payload())
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return ItemOut.from_item(item)


@router.post("/bulk-delete", response_model=DeletedCount)
def api_bulk_delete(payload: IdList, identity: Identity = Depends(require_identity), db: Session = Depends(get_db)):
    return DeletedCount(deleted=delete_items(db, identity.id, payload.ids))


@router.get("/{item_id}", response_model=ItemOut)
def api_get(item_id: str, identity: Identity = Depends(require_identity), db: Session = Depends(get_db)):
    item = get_item(db, identity.id, item_id)
    if not item:
        raise HTTPException(404, "Not found")
    return ItemOut.from_item(item)


@router.patch("/{item_id}", response_model=ItemOut)
def api_update(
    item_id: str,
    payload: ItemUpdate,
    identity: Identity = Depends(require_identity),
    db: Session = Depends(get_db),
):
    item = get_item(db, identity.id, item_id)
    if not item:
        raise HTTPException(404, "Not found")
    try:
        item = update_item(db, item, payload.to_payload())
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return ItemOut.from_item(item)


@router.delete("/{item_id}")
def api_delete(item_id: str, identity: Identity = Depends(require_identity), db: Session = Depends(get_db)):
    item = get_item(db, identity.id, item_id)
    if not item:
        raise HTTPException(404, "Not found")
    delete_item(db, item)
    return {"status": "deleted"}

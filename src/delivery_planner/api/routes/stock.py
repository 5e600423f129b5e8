"""Stock endpoints."""

from __future__ import annotations

from fastapi import APIRouter, Depends, status

from ...schemas.orders import StockBatchModel, StockLevelModel, StockReceiveRequest
from ...services.stock.store import InMemoryStockStore
from ..dependencies import get_stock_store

router = APIRouter(prefix="/stock", tags=["stock"])


def _level(stock: InMemoryStockStore, product_id: str) -> StockLevelModel:
    return StockLevelModel(
        product_id=product_id,
        available=stock.available(product_id),
        batches=[StockBatchModel.model_validate(batch) for batch in stock.batches(product_id)],
    )


@router.put("/{product_id}", response_model=StockLevelModel, status_code=status.HTTP_200_OK)
def receive_stock(
    product_id: str,
    payload: StockReceiveRequest,
    stock: InMemoryStockStore = Depends(get_stock_store),
) -> StockLevelModel:
    """Receive a batch of a product."""
    stock.receive(
        product_id,
        payload.quantity,
        expiry_date=payload.expiry_date,
        received_at=payload.received_at,
        batch_id=payload.batch_id,
    )
    return _level(stock, product_id)


@router.get("/{product_id}", response_model=StockLevelModel)
def get_stock(product_id: str, stock: InMemoryStockStore = Depends(get_stock_store)) -> StockLevelModel:
    return _level(stock, product_id)

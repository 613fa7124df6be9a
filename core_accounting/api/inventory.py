"""
Product and stock endpoints
"""

from decimal import Decimal
from typing import Optional
from fastapi import APIRouter, Depends, Header, status

from .dependencies import get_accounting_system, http_error
from .schemas import RegisterProductRequest, AdjustStockRequest, TransferStockRequest
from ..system import AccountingSystem
from ..inventory import AdjustmentType


router = APIRouter()


@router.post("", status_code=status.HTTP_201_CREATED)
async def register_product(
    request: RegisterProductRequest,
    actor: Optional[str] = Header(None, alias="X-Actor"),
    system: AccountingSystem = Depends(get_accounting_system)
):
    """Register a product with optional opening stock"""
    try:
        product = system.inventory.register_product(
            sku=request.sku,
            name=request.name,
            track_inventory=request.track_inventory,
            cost_price=Decimal(request.cost_price),
            initial_quantity=Decimal(request.initial_quantity),
            location_id=request.location_id,
            sale_price=Decimal(request.sale_price) if request.sale_price else None,
            actor=actor
        )
        return product.to_dict()
    except Exception as e:
        raise http_error(e)


@router.get("")
async def list_products(
    active_only: bool = False,
    system: AccountingSystem = Depends(get_accounting_system)
):
    """List products"""
    return {"products": [p.to_dict() for p in system.inventory.list_products(active_only)]}


@router.get("/{product_id}")
async def get_product(
    product_id: str,
    system: AccountingSystem = Depends(get_accounting_system)
):
    """Get a product with its stock per location"""
    try:
        product = system.inventory.require_product(product_id)
    except Exception as e:
        raise http_error(e)
    result = product.to_dict()
    result["stock_levels"] = [level.to_dict() for level in system.inventory.list_stock_levels(product_id)]
    return result


@router.get("/{product_id}/movements")
async def get_movements(
    product_id: str,
    system: AccountingSystem = Depends(get_accounting_system)
):
    """Stock movement history of a product"""
    try:
        system.inventory.require_product(product_id)
    except Exception as e:
        raise http_error(e)
    return {"movements": [m.to_dict() for m in system.inventory.get_movements(product_id=product_id)]}


@router.post("/{product_id}/adjustments", status_code=status.HTTP_201_CREATED)
async def adjust_stock(
    product_id: str,
    request: AdjustStockRequest,
    actor: Optional[str] = Header(None, alias="X-Actor"),
    system: AccountingSystem = Depends(get_accounting_system)
):
    """Apply a manual stock adjustment"""
    try:
        movement = system.inventory.adjust(
            product_id,
            AdjustmentType(request.adjustment_type),
            Decimal(request.quantity),
            unit_cost=Decimal(request.unit_cost) if request.unit_cost else None,
            update_cost=request.update_cost,
            location_id=request.location_id,
            notes=request.notes,
            actor=actor,
            entry_date=request.entry_date
        )
        return movement.to_dict()
    except Exception as e:
        raise http_error(e)


@router.post("/{product_id}/transfers", status_code=status.HTTP_201_CREATED)
async def transfer_stock(
    product_id: str,
    request: TransferStockRequest,
    actor: Optional[str] = Header(None, alias="X-Actor"),
    system: AccountingSystem = Depends(get_accounting_system)
):
    """Move stock between two locations"""
    try:
        out_movement, in_movement = system.inventory.transfer(
            product_id,
            request.from_location_id,
            request.to_location_id,
            Decimal(request.quantity),
            actor=actor,
            notes=request.notes
        )
        return {"out": out_movement.to_dict(), "in": in_movement.to_dict()}
    except Exception as e:
        raise http_error(e)

"""
Fixed asset endpoints
"""

from decimal import Decimal
from typing import Optional
from fastapi import APIRouter, Depends, Header, status

from .dependencies import get_accounting_system, http_error
from .schemas import RegisterAssetRequest, DepreciationRunRequest, DisposeAssetRequest
from ..system import AccountingSystem
from ..assets import AssetStatus


router = APIRouter()


@router.post("", status_code=status.HTTP_201_CREATED)
async def register_asset(
    request: RegisterAssetRequest,
    actor: Optional[str] = Header(None, alias="X-Actor"),
    system: AccountingSystem = Depends(get_accounting_system)
):
    """Add an asset to the register"""
    try:
        asset = system.assets.register_asset(
            name=request.name,
            purchase_date=request.purchase_date,
            cost=Decimal(request.cost),
            useful_life_months=request.useful_life_months,
            residual_value=Decimal(request.residual_value),
            depreciation_start_date=request.depreciation_start_date,
            paid_from_account_code=request.paid_from_account_code,
            description=request.description,
            actor=actor
        )
        return asset.to_dict()
    except Exception as e:
        raise http_error(e)


@router.get("")
async def list_assets(
    asset_status: Optional[str] = None,
    system: AccountingSystem = Depends(get_accounting_system)
):
    """List fixed assets"""
    try:
        assets = system.assets.list_assets(AssetStatus(asset_status) if asset_status else None)
    except Exception as e:
        raise http_error(e)
    return {"assets": [asset.to_dict() for asset in assets]}


@router.get("/{asset_id}")
async def get_asset(
    asset_id: str,
    system: AccountingSystem = Depends(get_accounting_system)
):
    """Get a fixed asset"""
    try:
        return system.assets.require_asset(asset_id).to_dict()
    except Exception as e:
        raise http_error(e)


@router.post("/{asset_id}/depreciate")
async def depreciate_asset(
    asset_id: str,
    request: DepreciationRunRequest,
    actor: Optional[str] = Header(None, alias="X-Actor"),
    system: AccountingSystem = Depends(get_accounting_system)
):
    """Post one month of depreciation for a single asset"""
    try:
        return system.assets.run_depreciation(asset_id, request.on_date, actor=actor).to_dict()
    except Exception as e:
        raise http_error(e)


@router.post("/{asset_id}/dispose")
async def dispose_asset(
    asset_id: str,
    request: DisposeAssetRequest,
    actor: Optional[str] = Header(None, alias="X-Actor"),
    system: AccountingSystem = Depends(get_accounting_system)
):
    """Dispose of an asset, booking the gain or loss against the proceeds"""
    try:
        result = system.assets.dispose_asset(
            asset_id,
            request.disposal_date,
            proceeds=Decimal(request.proceeds),
            proceeds_account_code=request.proceeds_account_code,
            actor=actor
        )
        return result.to_dict()
    except Exception as e:
        raise http_error(e)


@router.post("/depreciation-runs")
async def run_monthly_depreciation(
    request: DepreciationRunRequest,
    actor: Optional[str] = Header(None, alias="X-Actor"),
    system: AccountingSystem = Depends(get_accounting_system)
):
    """Depreciate every active asset due for the month"""
    outcomes = system.assets.run_monthly_depreciation(request.on_date, actor=actor)
    return {
        "on_date": request.on_date.isoformat(),
        "results": [outcome.to_dict() for outcome in outcomes],
        "failed": sum(1 for outcome in outcomes if not outcome.success),
    }

from fastapi import APIRouter, Depends
from typing import List

from oilstock.api.dependencies import get_current_user, get_inventory_store
from oilstock.crud.crud_inventory import InventoryStore
from oilstock.schemas.inventory import BranchSummary, OilType
from oilstock.schemas.user import CurrentUser
from oilstock.services.tank_status import branch_identifier

router = APIRouter()

@router.get("/branches", response_model=List[BranchSummary])
async def read_branches(
    include_inactive: bool = False,
    store: InventoryStore = Depends(get_inventory_store),
    current_user: CurrentUser = Depends(get_current_user),
):
    branches = await store.fetch_branches(active_only=not include_inactive)
    summaries = []
    for branch in branches:
        raw_tanks = branch.get("oilTanks")
        summaries.append(BranchSummary(
            id=branch_identifier(branch),
            name=str(branch.get("name") or branch_identifier(branch)),
            location=str(branch["location"]) if branch.get("location") is not None else None,
            active=branch.get("active"),
            tankCount=len(raw_tanks) if isinstance(raw_tanks, (list, dict)) else 0,
        ))
    return summaries


@router.get("/oil-types", response_model=List[OilType])
async def read_oil_types(
    store: InventoryStore = Depends(get_inventory_store),
    current_user: CurrentUser = Depends(get_current_user),
):
    return await store.fetch_oil_types()

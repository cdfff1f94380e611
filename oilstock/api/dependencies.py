from fastapi import Depends, Header, HTTPException, status
from motor.motor_asyncio import AsyncIOMotorDatabase
from typing import Optional

from oilstock.crud.crud_inventory import InventoryStore
from oilstock.db.mongodb import get_database
from oilstock.models.association import UserRole
from oilstock.schemas.user import CurrentUser


def get_current_user(
    x_user_name: Optional[str] = Header(None),
    x_user_role: Optional[str] = Header(None),
) -> CurrentUser:
    """
    La autenticacion la resuelve el gateway; aqui solo llegan
    el nombre y el rol del usuario en cabeceras.
    """
    if not x_user_name or not x_user_name.strip():
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Missing user identity",
        )
    try:
        role = UserRole(x_user_role)
    except ValueError:
        raise HTTPException(status_code=403, detail=f"Unknown role: {x_user_role}")
    return CurrentUser(name=x_user_name.strip(), role=role)


def get_warehouse_user(current_user: CurrentUser = Depends(get_current_user)) -> CurrentUser:
    if not current_user.can_manage_warehouse:
        raise HTTPException(status_code=403, detail="Warehouse access required")
    return current_user


def get_inventory_store(db: AsyncIOMotorDatabase = Depends(get_database)) -> InventoryStore:
    return InventoryStore(db)

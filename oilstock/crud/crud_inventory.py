import datetime
import logging
from typing import Any, Dict, List, Mapping, Optional, Tuple, Type, TypeVar, Union

import pymongo
from bson import ObjectId
from motor.motor_asyncio import AsyncIOMotorDatabase
from pydantic import BaseModel, ValidationError

from oilstock.core.config import settings
from oilstock.core.exceptions import BranchNotFoundError, TankNotFoundError, TankCapacityError
from oilstock.models.inventory import UNKNOWN, UNKNOWN_OIL_TYPE
from oilstock.schemas.inventory import OilType, UpdateLogEntry, InventoryTransaction

logger = logging.getLogger(__name__)

ModelT = TypeVar("ModelT", bound=BaseModel)


def branch_query(branch_id: str) -> Dict[str, Any]:
    """ Los _id pueden ser ObjectId (creados por la API) o strings (datos migrados) """
    if ObjectId.is_valid(branch_id):
        return {"_id": {"$in": [ObjectId(branch_id), branch_id]}}
    return {"_id": branch_id}


def _stringify_id(doc: Dict[str, Any]) -> Dict[str, Any]:
    doc = dict(doc)
    if "_id" in doc:
        doc["_id"] = str(doc["_id"])
    return doc


def _to_models(model: Type[ModelT], docs: List[Dict[str, Any]]) -> List[ModelT]:
    """ Convierte documentos de Mongo; los que no validan se omiten """
    items: List[ModelT] = []
    for doc in docs:
        data = _stringify_id(doc)
        data["id"] = data.pop("_id", None)
        try:
            items.append(model.model_validate(data))
        except ValidationError as e:
            logger.warning("Skipping malformed %s document %s: %s", model.__name__, data.get("id"), e)
    return items


def _level(value: Any) -> float:
    try:
        return float(value)
    except (TypeError, ValueError):
        return 0.0


def _locate_tank(
    branch_id: str, raw_tanks: Any, tank_key: Union[int, str]
) -> Tuple[Union[int, str], str]:
    """ Normaliza la clave (indice o nombre) y valida que el tanque exista """
    if isinstance(raw_tanks, list):
        if isinstance(tank_key, str) and tank_key.isdigit():
            tank_key = int(tank_key)
        tank_id = f"{branch_id}_tank_{tank_key}"
        found = isinstance(tank_key, int) and 0 <= tank_key < len(raw_tanks)
    elif isinstance(raw_tanks, dict):
        tank_key = str(tank_key)
        tank_id = f"{branch_id}_{tank_key}"
        found = tank_key in raw_tanks
    else:
        tank_id, found = f"{branch_id}_{tank_key}", False

    if not found or not isinstance(raw_tanks[tank_key], dict):
        raise TankNotFoundError(tank_id)
    return tank_key, tank_id


class InventoryStore:
    """
    Colaborador de persistencia del nucleo de inventario.
    Los tanques no son documentos propios: viven embebidos en 'oilTanks'
    de cada sucursal, asi que toda escritura es sobre el documento padre.
    """

    def __init__(self, db: AsyncIOMotorDatabase):
        self.db = db

    @property
    def branches(self):
        return self.db[settings.BRANCHES_COLLECTION]

    @property
    def oil_types(self):
        return self.db[settings.OIL_TYPES_COLLECTION]

    @property
    def tank_logs(self):
        return self.db[settings.TANK_LOGS_COLLECTION]

    @property
    def transactions(self):
        return self.db[settings.TRANSACTIONS_COLLECTION]

    async def fetch_branches(self, active_only: bool = True) -> List[Dict[str, Any]]:
        """ Devuelve los documentos crudos (con su lista/diccionario de tanques) """
        query = {"active": {"$ne": False}} if active_only else {}
        docs = await self.branches.find(query).to_list(length=None)
        return [_stringify_id(doc) for doc in docs]

    async def fetch_oil_types(self) -> List[OilType]:
        docs = await self.oil_types.find({}).to_list(length=None)
        return _to_models(OilType, docs)

    async def fetch_recent_update_logs(
        self,
        limit: Optional[int] = None,
        since: Optional[datetime.datetime] = None,
    ) -> List[UpdateLogEntry]:
        query = {"updatedAt": {"$gte": since}} if since else {}
        limit = limit or settings.RECENT_LOGS_LIMIT
        docs = await (
            self.tank_logs.find(query)
            .sort("updatedAt", pymongo.DESCENDING)
            .limit(limit)
            .to_list(length=limit)
        )
        return _to_models(UpdateLogEntry, docs)

    async def fetch_recent_transactions(
        self,
        limit: Optional[int] = None,
        since: Optional[datetime.datetime] = None,
    ) -> List[InventoryTransaction]:
        query = {"createdAt": {"$gte": since}} if since else {}
        limit = limit or settings.RECENT_LOGS_LIMIT
        docs = await (
            self.transactions.find(query)
            .sort("createdAt", pymongo.DESCENDING)
            .limit(limit)
            .to_list(length=limit)
        )
        return _to_models(InventoryTransaction, docs)

    async def _oil_type_name(self, oil_type_id: Optional[str]) -> Optional[str]:
        if not oil_type_id:
            return None
        query = {"_id": ObjectId(oil_type_id)} if ObjectId.is_valid(oil_type_id) else {"_id": oil_type_id}
        doc = await self.oil_types.find_one(query)
        return doc.get("name") if doc else None

    async def write_tank_level(
        self,
        branch_id: str,
        tank_key: Union[int, str],
        new_level: float,
        actor: str,
        notes: str = "",
        update_type: str = "manual",
    ) -> UpdateLogEntry:
        """
        Primitiva de un solo tanque: lee la sucursal, ubica el tanque,
        reemplaza su nivel con un $set atomico sobre el documento y
        luego agrega la entrada en tankUpdateLogs.
        """
        query = branch_query(branch_id)
        branch = await self.branches.find_one(query)
        if not branch:
            raise BranchNotFoundError(branch_id)

        tank_key, tank_id = _locate_tank(branch_id, branch.get("oilTanks"), tank_key)
        record = branch["oilTanks"][tank_key]
        capacity = _level(record.get("capacity"))
        if new_level < 0 or new_level > capacity:
            raise TankCapacityError(new_level, capacity)

        previous_level = _level(record.get("currentLevel"))
        version = int(record.get("updateVersion") or 0) + 1
        now = datetime.datetime.now(datetime.timezone.utc)
        prefix = f"oilTanks.{tank_key}"

        result = await self.branches.update_one(query, {"$set": {
            f"{prefix}.currentLevel": new_level,
            f"{prefix}.lastUpdated": now,
            f"{prefix}.lastUpdatedBy": actor,
            f"{prefix}.updateVersion": version,
            "updatedAt": now,
            "lastTankUpdate": now,
        }})
        if result.matched_count == 0:
            raise BranchNotFoundError(branch_id)

        oil_type_id = str(record.get("oilTypeId") or "")
        oil_type_name = str(
            await self._oil_type_name(oil_type_id)
            or record.get("oilTypeName")
            or UNKNOWN_OIL_TYPE
        )

        log = UpdateLogEntry(
            tankId=tank_id,
            branchId=branch_id,
            branchName=str(branch.get("name") or UNKNOWN),
            oilTypeId=oil_type_id,
            oilTypeName=oil_type_name,
            previousLevel=previous_level,
            newLevel=new_level,
            levelDifference=new_level - previous_level,
            updatedBy=actor,
            updatedAt=now,
            notes=notes,
            updateType=update_type,
            updateVersion=version,
            photos={"gaugePhoto": "", "systemPhoto": ""},
        )
        inserted = await self.tank_logs.insert_one(log.model_dump(exclude={"id"}))
        log.id = str(inserted.inserted_id)

        logger.info(
            "Tank %s updated: %sL -> %sL by %s",
            tank_id, previous_level, new_level, actor,
        )
        return log

    async def write_daily_usage(
        self,
        branch_id: str,
        usage_by_key: Mapping[Union[int, str], float],
        actor: str,
    ) -> List[str]:
        """
        Guarda el MAD de varios tanques de una misma sucursal en un solo $set.
        Todos los tanques deben existir; si falta uno no se escribe nada.
        """
        query = branch_query(branch_id)
        branch = await self.branches.find_one(query)
        if not branch:
            raise BranchNotFoundError(branch_id)

        now = datetime.datetime.now(datetime.timezone.utc)
        fields: Dict[str, Any] = {"updatedAt": now}
        tank_ids: List[str] = []
        for raw_key, daily_usage in usage_by_key.items():
            tank_key, tank_id = _locate_tank(branch_id, branch.get("oilTanks"), raw_key)
            fields[f"oilTanks.{tank_key}.dailyUsage"] = daily_usage
            tank_ids.append(tank_id)

        result = await self.branches.update_one(query, {"$set": fields})
        if result.matched_count == 0:
            raise BranchNotFoundError(branch_id)

        logger.info("Daily usage updated for %d tanks in branch %s by %s", len(tank_ids), branch_id, actor)
        return tank_ids

"""Fixtures compartidos: sucursales de ejemplo y un almacen en memoria."""

import asyncio
import contextlib
import copy
import datetime
from typing import Any, Dict, List, Optional, Union

import pytest

from oilstock.core.exceptions import BranchNotFoundError, TankNotFoundError, TankCapacityError
from oilstock.schemas.inventory import OilType, UpdateLogEntry, InventoryTransaction
from oilstock.services.tank_status import extract_tanks


def sample_branch_docs() -> List[Dict[str, Any]]:
    return [
        {
            "_id": "b1",
            "name": "Main Depot - Manama",
            "active": True,
            "oilTanks": [
                {"oilTypeId": "oil-001", "currentLevel": 480, "capacity": 500},
                {"oilTypeId": "oil-002", "currentLevel": 150, "capacity": 500},
            ],
        },
        {
            "_id": "b2",
            "name": "North Depot - Muharraq",
            "active": True,
            "oilTanks": {
                "diesel": {"oilTypeId": "oil-001", "currentLevel": 20, "capacity": 500},
            },
        },
        {
            "_id": "b3",
            "name": "South Depot - Riffa",
            "active": True,
            "oilTanks": [],
        },
    ]


SAMPLE_OIL_TYPES = [
    OilType(id="oil-001", name="Premium Diesel"),
    OilType(id="oil-002", name="Super Gasoline 95"),
]


class FakeInventoryStore:
    """
    Reemplazo en memoria de InventoryStore con la misma interfaz async.
    'fail_on' contiene ids de tanque (niveles) o de sucursal (MAD) cuya
    escritura debe fallar.
    """

    def __init__(self, branches: List[Dict[str, Any]], oil_types: List[OilType]):
        self.branches = branches
        self.oil_types = oil_types
        self.logs: List[UpdateLogEntry] = []
        self.transactions: List[InventoryTransaction] = []
        self.writes: List[str] = []
        self.fail_on: set = set()
        # Escrituras en curso: total y por sucursal, con su maximo observado
        self.in_flight = 0
        self.max_in_flight = 0
        self.in_flight_by_branch: Dict[str, int] = {}
        self.max_in_flight_by_branch: Dict[str, int] = {}

    async def fetch_branches(self, active_only: bool = True) -> List[Dict[str, Any]]:
        return [
            copy.deepcopy(b) for b in self.branches
            if not active_only or b.get("active") is not False
        ]

    async def fetch_oil_types(self) -> List[OilType]:
        return list(self.oil_types)

    async def fetch_recent_update_logs(
        self, limit: Optional[int] = None, since: Optional[datetime.datetime] = None
    ) -> List[UpdateLogEntry]:
        logs = sorted(self.logs, key=lambda log: log.updatedAt, reverse=True)
        return logs[:limit] if limit else logs

    async def fetch_recent_transactions(
        self, limit: Optional[int] = None, since: Optional[datetime.datetime] = None
    ) -> List[InventoryTransaction]:
        return list(self.transactions)

    @contextlib.asynccontextmanager
    async def _tracking(self, branch_id: str):
        self.in_flight += 1
        self.in_flight_by_branch[branch_id] = self.in_flight_by_branch.get(branch_id, 0) + 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        self.max_in_flight_by_branch[branch_id] = max(
            self.max_in_flight_by_branch.get(branch_id, 0), self.in_flight_by_branch[branch_id]
        )
        try:
            # cede el loop: escrituras concurrentes se solaparian aqui
            await asyncio.sleep(0)
            yield
        finally:
            self.in_flight -= 1
            self.in_flight_by_branch[branch_id] -= 1

    async def write_tank_level(
        self,
        branch_id: str,
        tank_key: Union[int, str],
        new_level: float,
        actor: str,
        notes: str = "",
        update_type: str = "manual",
    ) -> UpdateLogEntry:
        async with self._tracking(branch_id):
            return self._apply_level(branch_id, tank_key, new_level, actor, notes, update_type)

    async def write_daily_usage(
        self,
        branch_id: str,
        usage_by_key: Dict[Union[int, str], float],
        actor: str,
    ) -> List[str]:
        async with self._tracking(branch_id):
            branch = next((b for b in self.branches if b["_id"] == branch_id), None)
            if branch is None:
                raise BranchNotFoundError(branch_id)
            if branch_id in self.fail_on:
                raise RuntimeError("write rejected")

            tank_ids = []
            for tank_key in usage_by_key:
                tank_id = self._tank_id(branch, tank_key)
                try:
                    branch["oilTanks"][tank_key]
                except (IndexError, KeyError, TypeError):
                    raise TankNotFoundError(tank_id)
                tank_ids.append(tank_id)
            for tank_key, daily_usage in usage_by_key.items():
                branch["oilTanks"][tank_key]["dailyUsage"] = daily_usage
            self.writes.extend(tank_ids)
            return tank_ids

    @staticmethod
    def _tank_id(branch: Dict[str, Any], tank_key: Union[int, str]) -> str:
        if isinstance(branch["oilTanks"], list):
            return f"{branch['_id']}_tank_{tank_key}"
        return f"{branch['_id']}_{tank_key}"

    def _apply_level(
        self,
        branch_id: str,
        tank_key: Union[int, str],
        new_level: float,
        actor: str,
        notes: str = "",
        update_type: str = "manual",
    ) -> UpdateLogEntry:
        branch = next((b for b in self.branches if b["_id"] == branch_id), None)
        if branch is None:
            raise BranchNotFoundError(branch_id)

        tank_id = self._tank_id(branch, tank_key)
        if tank_id in self.fail_on:
            raise RuntimeError("write rejected")

        try:
            record = branch["oilTanks"][tank_key]
        except (IndexError, KeyError, TypeError):
            raise TankNotFoundError(tank_id)
        if new_level < 0 or new_level > record["capacity"]:
            raise TankCapacityError(new_level, record["capacity"])

        previous = record["currentLevel"]
        now = datetime.datetime.now(datetime.timezone.utc)
        record["currentLevel"] = new_level
        record["lastUpdated"] = now
        record["lastUpdatedBy"] = actor
        self.writes.append(tank_id)

        log = UpdateLogEntry(
            id=str(len(self.logs) + 1),
            tankId=tank_id,
            branchId=branch_id,
            branchName=branch["name"],
            oilTypeId=record["oilTypeId"],
            oilTypeName=next(
                (o.name for o in self.oil_types if o.id == record["oilTypeId"]), "Unknown Oil Type"
            ),
            previousLevel=previous,
            newLevel=new_level,
            levelDifference=new_level - previous,
            updatedBy=actor,
            updatedAt=now,
            notes=notes,
            updateType=update_type,
        )
        self.logs.append(log)
        return log


@pytest.fixture
def branch_docs():
    return sample_branch_docs()


@pytest.fixture
def oil_types():
    return list(SAMPLE_OIL_TYPES)


@pytest.fixture
def tanks(branch_docs, oil_types):
    return extract_tanks(branch_docs, oil_types)


@pytest.fixture
def store(oil_types):
    return FakeInventoryStore(sample_branch_docs(), oil_types)

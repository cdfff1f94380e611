# oilstock/schemas/inventory.py
from pydantic import BaseModel, Field, AliasChoices
from typing import List, Optional, Dict, Union
import datetime

from oilstock.models.inventory import (
    UNKNOWN,
    TankStatus,
    StalenessTier,
    BranchRollupStatus,
    CommitOutcome,
    ViolationKind,
)

# Lote de cambios en memoria: id de tanque -> nivel propuesto (litros)
BulkUpdateBatch = Dict[str, float]


class OilType(BaseModel):
    id: str
    name: str
    category: Optional[str] = None
    active: Optional[bool] = None

    class Config:
        extra = 'ignore'

class BranchSummary(BaseModel):
    id: str
    name: str
    location: Optional[str] = None
    active: Optional[bool] = None
    tankCount: int = 0

class Tank(BaseModel):
    """ Tanque embebido en una sucursal, ya normalizado """
    id: str
    branchId: str
    branchName: str
    tankKey: Union[int, str]
    oilTypeId: str
    oilTypeName: str
    currentLevel: float
    capacity: float
    percentage: float
    status: TankStatus
    lastUpdated: Optional[datetime.datetime] = None
    lastUpdatedBy: Optional[str] = None
    dailyUsage: Optional[float] = None
    # Meses de stock al consumo diario actual (MAD); None sin consumo
    stockMonths: Optional[float] = None

class UpdateLogEntry(BaseModel):
    """
    Registro inmutable de un cambio de nivel (coleccion tankUpdateLogs).
    Los registros historicos usan 'oldLevel' en vez de 'previousLevel'.
    """
    id: Optional[str] = None
    tankId: Optional[str] = None
    branchId: Optional[str] = None
    branchName: str = UNKNOWN
    oilTypeId: Optional[str] = None
    oilTypeName: str = UNKNOWN
    previousLevel: float = Field(0, validation_alias=AliasChoices("previousLevel", "oldLevel"))
    newLevel: float = 0
    levelDifference: float = 0
    updatedBy: str = UNKNOWN
    updatedAt: Optional[datetime.datetime] = None
    notes: str = ""
    updateType: str = "manual"
    updateVersion: Optional[int] = None
    photos: Dict[str, str] = {}

    class Config:
        extra = 'ignore'
        populate_by_name = True

class InventoryTransaction(BaseModel):
    """ Movimiento de chofer (supply/loading/delivery), solo lectura """
    id: Optional[str] = None
    type: str
    branchId: Optional[str] = None
    branchName: Optional[str] = None
    oilTypeId: Optional[str] = None
    oilTypeName: Optional[str] = None
    driverName: Optional[str] = None
    driverDisplayName: Optional[str] = None
    timestamp: Optional[datetime.datetime] = None
    createdAt: Optional[datetime.datetime] = None

    class Config:
        extra = 'ignore'

    @property
    def occurred_at(self) -> Optional[datetime.datetime]:
        return self.timestamp or self.createdAt

    @property
    def actor(self) -> str:
        return self.driverName or self.driverDisplayName or "Driver"


class TankFreshness(BaseModel):
    tankId: str
    oilTypeName: str
    currentLevel: float
    capacity: float
    percentage: float
    updateStatus: StalenessTier
    lastUpdate: Optional[datetime.datetime] = None
    lastUpdateBy: Optional[str] = None
    daysSinceUpdate: Optional[int] = None
    lastManualUpdate: Optional[datetime.datetime] = None
    lastManualUpdateBy: Optional[str] = None
    manualUpdateDisplay: str
    lastSupplyLoading: Optional[datetime.datetime] = None
    lastSupplyLoadingBy: Optional[str] = None
    supplyUpdateDisplay: str

class BranchRollup(BaseModel):
    branchId: str
    branchName: str
    status: BranchRollupStatus
    totalTanks: int
    recentlyUpdatedTanks: int
    staleTanks: int
    oldTanks: int
    neverUpdatedTanks: int
    lastUpdate: Optional[datetime.datetime] = None
    tankDetails: List[TankFreshness] = []


class BatchViolation(BaseModel):
    tankId: str
    kind: ViolationKind
    branchName: Optional[str] = None
    oilTypeName: Optional[str] = None
    value: float
    capacity: Optional[float] = None
    message: str

class BranchCommitResult(BaseModel):
    branchId: str
    branchName: str
    succeeded: bool
    updatedTankIds: List[str] = []
    failedTankId: Optional[str] = None
    error: Optional[str] = None

class CommitReport(BaseModel):
    outcome: CommitOutcome
    totalRequested: int
    totalUpdated: int
    branches: List[BranchCommitResult] = []

    @property
    def failures(self) -> List[BranchCommitResult]:
        return [b for b in self.branches if not b.succeeded]


class ImportRowError(BaseModel):
    row: int
    tankId: Optional[str] = None
    message: str

class ImportResult(BaseModel):
    batch: BulkUpdateBatch = {}
    errors: List[ImportRowError] = []

    @property
    def ok(self) -> bool:
        return not self.errors


# --- Cuerpos de peticion ---

class StageChangeRequest(BaseModel):
    batch: BulkUpdateBatch = {}
    tankId: str
    newLevel: float

class StagedBatchResponse(BaseModel):
    batch: BulkUpdateBatch
    violations: List[BatchViolation] = []

class BulkUpdateRequest(BaseModel):
    updates: BulkUpdateBatch
    notes: Optional[str] = None

class CommitResponse(BaseModel):
    report: CommitReport
    tanks: List[Tank]

class TankLevelUpdate(BaseModel):
    currentLevel: float
    notes: Optional[str] = None

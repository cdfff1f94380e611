from fastapi import APIRouter, Depends, HTTPException, status, Query, File, UploadFile
from fastapi.responses import Response
from typing import Any, Callable, Dict, List, Optional, Tuple
import datetime

import pytz

from oilstock.api.dependencies import get_warehouse_user, get_inventory_store
from oilstock.core.config import settings
from oilstock.core.exceptions import (
    EmptyBatchError,
    BatchValidationError,
    CsvFormatError,
    BranchNotFoundError,
    TankNotFoundError,
    TankCapacityError,
)
from oilstock.crud.crud_inventory import InventoryStore
from oilstock.models.inventory import TankStatus, TemplateKind
from oilstock.schemas.inventory import (
    Tank,
    BranchRollup,
    UpdateLogEntry,
    BatchViolation,
    StageChangeRequest,
    StagedBatchResponse,
    BulkUpdateRequest,
    CommitResponse,
    ImportResult,
    TankLevelUpdate,
)
from oilstock.schemas.user import CurrentUser
from oilstock.services import bulk_update, csv_templates
from oilstock.services.staleness import build_branch_rollups, get_local_timezone
from oilstock.services.tank_status import extract_tanks

router = APIRouter()


async def _load_tanks(store: InventoryStore) -> Tuple[List[Dict[str, Any]], List[Tank]]:
    """ Lee sucursales y tipos de aceite y deriva la lista plana de tanques """
    branches = await store.fetch_branches()
    oil_types = await store.fetch_oil_types()
    return branches, extract_tanks(branches, oil_types)


def _today() -> datetime.date:
    return datetime.datetime.now(get_local_timezone()).date()


def _csv_response(content: str, filename: str) -> Response:
    return Response(
        content=content,
        media_type="text/csv",
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )


async def _read_upload(file: UploadFile) -> str:
    content = await file.read(settings.MAX_IMPORT_BYTES + 1)
    if len(content) > settings.MAX_IMPORT_BYTES:
        raise HTTPException(
            status_code=status.HTTP_413_REQUEST_ENTITY_TOO_LARGE,
            detail=f"CSV file exceeds {settings.MAX_IMPORT_BYTES} bytes",
        )
    try:
        return content.decode("utf-8")
    except UnicodeDecodeError:
        raise HTTPException(status_code=400, detail="CSV file must be UTF-8 encoded")


def _checked_import(
    parser: Callable[[str, List[Tank]], ImportResult],
    text: str,
    tanks: List[Tank],
) -> ImportResult:
    """ 400 si el archivo no se puede leer, 422 con todos los errores por fila """
    try:
        result = parser(text, tanks)
    except CsvFormatError as e:
        raise HTTPException(status_code=400, detail=str(e))

    if not result.ok:
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail={
                "message": f"Found {len(result.errors)} errors in CSV file",
                "errors": [error.model_dump() for error in result.errors],
            },
        )
    return result


@router.get("/warehouse/tanks", response_model=List[Tank])
async def read_tanks(
    branch_id: Optional[str] = None,
    tank_status: Optional[TankStatus] = Query(None, alias="status"),
    store: InventoryStore = Depends(get_inventory_store),
    current_user: CurrentUser = Depends(get_warehouse_user),
):
    """
    Todos los tanques de las sucursales activas con su nivel y estado.
    """
    _, tanks = await _load_tanks(store)
    if branch_id:
        tanks = [t for t in tanks if t.branchId == branch_id]
    if tank_status:
        tanks = [t for t in tanks if t.status == tank_status]
    return tanks


@router.get("/warehouse/branches/rollup", response_model=List[BranchRollup])
async def read_branch_rollups(
    store: InventoryStore = Depends(get_inventory_store),
    current_user: CurrentUser = Depends(get_warehouse_user),
):
    """
    Estado de actualizacion por sucursal (needs-attention / partially-updated / fully-updated).
    """
    now = datetime.datetime.now(pytz.utc)
    since = now - datetime.timedelta(days=settings.ACTIVITY_WINDOW_DAYS)

    branches, tanks = await _load_tanks(store)
    logs = await store.fetch_recent_update_logs()
    transactions = await store.fetch_recent_transactions(since=since)
    return build_branch_rollups(branches, tanks, logs, transactions, now=now)


@router.post("/warehouse/bulk-update/stage", response_model=StagedBatchResponse)
async def stage_tank_change(
    request: StageChangeRequest,
    store: InventoryStore = Depends(get_inventory_store),
    current_user: CurrentUser = Depends(get_warehouse_user),
):
    _, tanks = await _load_tanks(store)
    batch = bulk_update.stage_change(request.batch, request.tankId, request.newLevel)
    return StagedBatchResponse(batch=batch, violations=bulk_update.validate_batch(batch, tanks))


@router.post("/warehouse/bulk-update/validate", response_model=List[BatchViolation])
async def validate_bulk_update(
    request: BulkUpdateRequest,
    store: InventoryStore = Depends(get_inventory_store),
    current_user: CurrentUser = Depends(get_warehouse_user),
):
    _, tanks = await _load_tanks(store)
    return bulk_update.validate_batch(request.updates, tanks)


@router.post("/warehouse/bulk-update/commit", response_model=CommitResponse)
async def commit_bulk_update(
    request: BulkUpdateRequest,
    store: InventoryStore = Depends(get_inventory_store),
    current_user: CurrentUser = Depends(get_warehouse_user),
):
    """
    Aplica el lote sucursal por sucursal. Si hay violaciones no se escribe nada (422).
    La respuesta incluye los tanques releidos despues del commit.
    """
    _, tanks = await _load_tanks(store)
    try:
        report = await bulk_update.commit(
            request.updates,
            tanks,
            store,
            actor=current_user.name,
            notes=request.notes or bulk_update.DEFAULT_BULK_NOTES,
        )
    except EmptyBatchError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except BatchValidationError as e:
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail={
                "message": "Cannot update: some levels are invalid",
                "violations": [v.model_dump(mode="json") for v in e.violations],
            },
        )

    _, refreshed = await _load_tanks(store)
    return CommitResponse(report=report, tanks=refreshed)


@router.patch("/warehouse/tanks/{tank_id}", response_model=UpdateLogEntry)
async def update_tank_level(
    tank_id: str,
    update: TankLevelUpdate,
    store: InventoryStore = Depends(get_inventory_store),
    current_user: CurrentUser = Depends(get_warehouse_user),
):
    _, tanks = await _load_tanks(store)
    tank = next((t for t in tanks if t.id == tank_id), None)
    if tank is None:
        raise HTTPException(status_code=404, detail="Tank not found")

    try:
        return await store.write_tank_level(
            tank.branchId,
            tank.tankKey,
            update.currentLevel,
            actor=current_user.name,
            notes=update.notes or "",
        )
    except TankCapacityError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except (BranchNotFoundError, TankNotFoundError) as e:
        raise HTTPException(status_code=404, detail=str(e))


@router.get("/warehouse/templates/{kind}")
async def download_template(
    kind: TemplateKind,
    prefill: bool = False,
    store: InventoryStore = Depends(get_inventory_store),
    current_user: CurrentUser = Depends(get_warehouse_user),
):
    _, tanks = await _load_tanks(store)
    today = _today()
    content = csv_templates.export_template(kind, tanks, export_date=today, prefill_new_level=prefill)
    name = {
        TemplateKind.bulk: "bulk-update-template",
        TemplateKind.stock: "stock-report",
        TemplateKind.daily_usage: "mad-update",
    }[kind]
    return _csv_response(content, f"warehouse-{name}-{today.isoformat()}.csv")


@router.post("/warehouse/templates/import", response_model=ImportResult)
async def import_template(
    file: UploadFile = File(...),
    store: InventoryStore = Depends(get_inventory_store),
    current_user: CurrentUser = Depends(get_warehouse_user),
):
    """
    Convierte una plantilla editada en un lote listo para el commit.
    No escribe nada; el cliente decide si envia el lote.
    """
    text = await _read_upload(file)
    _, tanks = await _load_tanks(store)
    return _checked_import(csv_templates.import_template, text, tanks)


@router.post("/warehouse/daily-usage/import", response_model=CommitResponse)
async def import_daily_usage(
    file: UploadFile = File(...),
    store: InventoryStore = Depends(get_inventory_store),
    current_user: CurrentUser = Depends(get_warehouse_user),
):
    """
    Carga el MAD (consumo diario promedio) desde la plantilla y lo guarda
    sucursal por sucursal. Devuelve el reporte y los tanques releidos.
    """
    text = await _read_upload(file)
    _, tanks = await _load_tanks(store)
    result = _checked_import(csv_templates.import_daily_usage, text, tanks)

    try:
        report = await bulk_update.apply_daily_usage(result.batch, tanks, store, actor=current_user.name)
    except EmptyBatchError as e:
        raise HTTPException(status_code=400, detail=str(e))

    _, refreshed = await _load_tanks(store)
    return CommitResponse(report=report, tanks=refreshed)


@router.get("/warehouse/update-logs", response_model=List[UpdateLogEntry])
async def read_update_logs(
    limit: int = Query(100, ge=1, le=1000),
    store: InventoryStore = Depends(get_inventory_store),
    current_user: CurrentUser = Depends(get_warehouse_user),
):
    return await store.fetch_recent_update_logs(limit=limit)


@router.get("/warehouse/update-logs/export")
async def export_update_logs(
    limit: int = Query(1000, ge=1, le=10000),
    store: InventoryStore = Depends(get_inventory_store),
    current_user: CurrentUser = Depends(get_warehouse_user),
):
    logs = await store.fetch_recent_update_logs(limit=limit)
    content = csv_templates.export_update_logs(logs)
    return _csv_response(content, f"tank-update-logs-{_today().isoformat()}.csv")

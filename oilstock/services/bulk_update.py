# oilstock/services/bulk_update.py
import logging
import math
from typing import Any, Dict, Iterable, List, Mapping, Tuple

from oilstock.core.exceptions import EmptyBatchError, BatchValidationError
from oilstock.crud.crud_inventory import InventoryStore
from oilstock.models.inventory import CommitOutcome, ViolationKind
from oilstock.schemas.inventory import (
    BulkUpdateBatch,
    Tank,
    BatchViolation,
    BranchCommitResult,
    CommitReport,
)
from oilstock.services.tank_status import index_tanks

logger = logging.getLogger(__name__)

DEFAULT_BULK_NOTES = "Updated via warehouse bulk update"


def stage_change(batch: Mapping[str, float], tank_id: str, new_level: float) -> BulkUpdateBatch:
    """
    Registra un valor propuesto. No escribe nada y no valida: mientras esta
    en staging el valor puede superar la capacidad (la UI lo marca).
    Devuelve un lote nuevo, el original no se modifica.
    """
    staged = dict(batch)
    staged[tank_id] = new_level
    return staged


def discard_change(batch: Mapping[str, float], tank_id: str) -> BulkUpdateBatch:
    staged = dict(batch)
    staged.pop(tank_id, None)
    return staged


def _as_level(raw_value: Any) -> float:
    try:
        return float(raw_value)
    except (TypeError, ValueError):
        return math.nan


def validate_batch(batch: Mapping[str, Any], tanks: Iterable[Tank]) -> List[BatchViolation]:
    """
    Una violacion por cada entrada invalida; la lista completa, nunca solo la primera.
    """
    tanks_by_id = index_tanks(tanks)
    violations: List[BatchViolation] = []

    for tank_id, raw_value in batch.items():
        value = _as_level(raw_value)
        tank = tanks_by_id.get(tank_id)

        if tank is None:
            violations.append(BatchViolation(
                tankId=tank_id,
                kind=ViolationKind.unknown_tank,
                value=value,
                message=f"Tank not found: {tank_id}",
            ))
            continue

        label = f"{tank.branchName} - {tank.oilTypeName}"
        if not math.isfinite(value):
            kind, message = ViolationKind.invalid_number, f"{label}: {raw_value!r} is not a valid level"
        elif value < 0:
            kind, message = ViolationKind.negative_level, f"{label}: {value:g}L is below 0L"
        elif value > tank.capacity:
            kind, message = (
                ViolationKind.exceeds_capacity,
                f"{label}: {value:g}L exceeds capacity {tank.capacity:g}L",
            )
        else:
            continue

        violations.append(BatchViolation(
            tankId=tank_id,
            kind=kind,
            branchName=tank.branchName,
            oilTypeName=tank.oilTypeName,
            value=value,
            capacity=tank.capacity,
            message=message,
        ))

    return violations


def _group_by_branch(
    batch: Mapping[str, Any], tanks_by_id: Mapping[str, Tank]
) -> Dict[str, List[Tuple[Tank, float]]]:
    grouped: Dict[str, List[Tuple[Tank, float]]] = {}
    for tank_id, new_level in batch.items():
        tank = tanks_by_id[tank_id]
        grouped.setdefault(tank.branchId, []).append((tank, float(new_level)))
    return grouped


def _outcome(total_updated: int, total_requested: int) -> CommitOutcome:
    if total_updated == total_requested:
        return CommitOutcome.success
    if total_updated == 0:
        return CommitOutcome.failed
    return CommitOutcome.partial


async def _commit_branch(
    branch_id: str,
    entries: List[Tuple[Tank, float]],
    store: InventoryStore,
    actor: str,
    notes: str,
) -> BranchCommitResult:
    branch_name = entries[0][0].branchName
    logger.info("Processing %d updates for branch: %s", len(entries), branch_name)
    updated: List[str] = []

    for tank, new_level in entries:
        try:
            await store.write_tank_level(
                tank.branchId, tank.tankKey, new_level, actor=actor, notes=notes,
            )
        except Exception as e:
            # El resto de esta sucursal se abandona; las demas sucursales siguen
            logger.exception("Failed to update tank %s in %s", tank.id, branch_name)
            return BranchCommitResult(
                branchId=branch_id,
                branchName=branch_name,
                succeeded=False,
                updatedTankIds=updated,
                failedTankId=tank.id,
                error=f"Failed to update tank {tank.oilTypeName} in {branch_name}: {e}",
            )
        updated.append(tank.id)
        logger.info("Updated tank %s: %sL -> %sL", tank.id, tank.currentLevel, new_level)

    return BranchCommitResult(
        branchId=branch_id,
        branchName=branch_name,
        succeeded=True,
        updatedTankIds=updated,
    )


async def commit(
    batch: Mapping[str, Any],
    tanks: Iterable[Tank],
    store: InventoryStore,
    actor: str,
    notes: str = DEFAULT_BULK_NOTES,
) -> CommitReport:
    """
    Aplica el lote. Las sucursales se procesan una por una (nunca en paralelo):
    los tanques son sub-registros del documento de la sucursal y dos escrituras
    concurrentes sobre el mismo documento perderian una de ellas.

    Un lote con cualquier violacion no escribe nada (BatchValidationError).
    El llamador debe volver a leer los tanques despues del commit.
    """
    if not batch:
        raise EmptyBatchError()

    tanks = list(tanks)
    violations = validate_batch(batch, tanks)
    if violations:
        logger.error("Bulk update blocked due to %d violation(s)", len(violations))
        raise BatchValidationError(violations)

    grouped = _group_by_branch(batch, index_tanks(tanks))
    logger.info(
        "Starting bulk update of %d tanks across %d branches (by %s)",
        len(batch), len(grouped), actor,
    )

    results: List[BranchCommitResult] = []
    for branch_id, entries in grouped.items():
        results.append(await _commit_branch(branch_id, entries, store, actor, notes))

    total_updated = sum(len(result.updatedTankIds) for result in results)
    outcome = _outcome(total_updated, len(batch))

    logger.info("Bulk update finished: %s (%d/%d tanks)", outcome.value, total_updated, len(batch))
    return CommitReport(
        outcome=outcome,
        totalRequested=len(batch),
        totalUpdated=total_updated,
        branches=results,
    )


async def apply_daily_usage(
    usage: Mapping[str, float],
    tanks: Iterable[Tank],
    store: InventoryStore,
    actor: str,
) -> CommitReport:
    """
    Guarda el MAD importado: un $set por sucursal, sucursal por sucursal,
    con la misma regla secuencial que commit. Un fallo deja esa sucursal
    sin cambios y las demas siguen.
    """
    if not usage:
        raise EmptyBatchError("No daily usage values to apply")

    tanks_by_id = index_tanks(tanks)
    unknown = [tank_id for tank_id in usage if tank_id not in tanks_by_id]
    if unknown:
        raise BatchValidationError([
            BatchViolation(
                tankId=tank_id,
                kind=ViolationKind.unknown_tank,
                value=_as_level(usage[tank_id]),
                message=f"Tank not found: {tank_id}",
            )
            for tank_id in unknown
        ])

    results: List[BranchCommitResult] = []
    for branch_id, entries in _group_by_branch(usage, tanks_by_id).items():
        branch_name = entries[0][0].branchName
        try:
            updated = await store.write_daily_usage(
                branch_id,
                {tank.tankKey: value for tank, value in entries},
                actor=actor,
            )
        except Exception as e:
            logger.exception("Failed to update daily usage in %s", branch_name)
            results.append(BranchCommitResult(
                branchId=branch_id,
                branchName=branch_name,
                succeeded=False,
                error=f"Failed to update MAD in {branch_name}: {e}",
            ))
            continue
        results.append(BranchCommitResult(
            branchId=branch_id, branchName=branch_name, succeeded=True, updatedTankIds=updated,
        ))

    total_updated = sum(len(result.updatedTankIds) for result in results)
    outcome = _outcome(total_updated, len(usage))
    logger.info("Daily usage update finished: %s (%d/%d tanks)", outcome.value, total_updated, len(usage))
    return CommitReport(
        outcome=outcome,
        totalRequested=len(usage),
        totalUpdated=total_updated,
        branches=results,
    )

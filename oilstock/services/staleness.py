# oilstock/services/staleness.py
import datetime
import logging
from collections import Counter
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence, Tuple

import pytz

from oilstock.core.config import settings
from oilstock.models.inventory import StalenessTier, BranchRollupStatus, TransactionType
from oilstock.schemas.inventory import (
    Tank,
    UpdateLogEntry,
    InventoryTransaction,
    TankFreshness,
    BranchRollup,
)
from oilstock.services.tank_status import branch_identifier, group_tanks_by_branch

logger = logging.getLogger(__name__)

RECENT_MAX_DAYS = 1
STALE_MAX_DAYS = 6

# (nombre de sucursal, nombre de aceite): los logs historicos solo guardan nombres
TankNameKey = Tuple[str, str]

OUTDATED_TIERS = (StalenessTier.never, StalenessTier.old)


def get_local_timezone() -> datetime.tzinfo:
    return pytz.timezone(settings.TIMEZONE)


def _as_utc(moment: datetime.datetime) -> datetime.datetime:
    # Mongo devuelve datetimes "naive" en UTC
    if moment.tzinfo is None:
        return pytz.utc.localize(moment)
    return moment.astimezone(pytz.utc)


def to_local(moment: datetime.datetime, tz: Optional[datetime.tzinfo] = None) -> datetime.datetime:
    return _as_utc(moment).astimezone(tz or get_local_timezone())


def days_since(
    last_update: datetime.datetime,
    now: datetime.datetime,
    tz: Optional[datetime.tzinfo] = None,
) -> int:
    """
    Diferencia en dias calendario (medianoche local), no ventanas de 24 horas.
    Puede ser negativa si last_update esta en el futuro.
    """
    tz = tz or get_local_timezone()
    return (to_local(now, tz).date() - to_local(last_update, tz).date()).days


def classify_staleness(
    last_update: Optional[datetime.datetime],
    now: datetime.datetime,
    tz: Optional[datetime.tzinfo] = None,
) -> StalenessTier:
    if last_update is None:
        return StalenessTier.never

    days = days_since(last_update, now, tz)
    if days <= RECENT_MAX_DAYS:
        return StalenessTier.recent
    if days <= STALE_MAX_DAYS:
        return StalenessTier.stale
    return StalenessTier.old


def rollup_branch(tiers: Sequence[StalenessTier]) -> BranchRollupStatus:
    """
    Red: todos los tanques never/old. Green: todos recent. Yellow: mezcla.
    Una sucursal sin tanques cuenta como 'todos recent' (fully-updated).
    """
    if not tiers:
        return BranchRollupStatus.fully_updated
    if all(tier in OUTDATED_TIERS for tier in tiers):
        return BranchRollupStatus.needs_attention
    if all(tier == StalenessTier.recent for tier in tiers):
        return BranchRollupStatus.fully_updated
    return BranchRollupStatus.partially_updated


def _resolve_branch_name(
    branch_id: Optional[str],
    stored_name: Optional[str],
    branch_names: Mapping[str, str],
) -> Optional[str]:
    if branch_id and branch_id in branch_names:
        return branch_names[branch_id]
    return stored_name or branch_id


def latest_updates_by_tank(
    logs: Iterable[UpdateLogEntry],
    branch_names: Mapping[str, str],
) -> Dict[TankNameKey, UpdateLogEntry]:
    """ Ultimo ajuste manual por (sucursal, aceite) """
    latest: Dict[TankNameKey, UpdateLogEntry] = {}
    for log in logs:
        if log.updatedAt is None:
            continue
        branch_name = _resolve_branch_name(log.branchId, log.branchName, branch_names)
        key = (branch_name, log.oilTypeName)
        current = latest.get(key)
        if current is None or _as_utc(log.updatedAt) > _as_utc(current.updatedAt):
            latest[key] = log
    return latest


def latest_supply_by_tank(
    transactions: Iterable[InventoryTransaction],
    branch_names: Mapping[str, str],
) -> Dict[TankNameKey, InventoryTransaction]:
    """ Ultimo supply/loading por (sucursal, aceite); los delivery no cuentan """
    movement_types = (TransactionType.supply.value, TransactionType.loading.value)
    latest: Dict[TankNameKey, InventoryTransaction] = {}
    for tx in transactions:
        if tx.type not in movement_types or tx.occurred_at is None:
            continue
        branch_name = _resolve_branch_name(tx.branchId, tx.branchName, branch_names)
        key = (branch_name, tx.oilTypeName)
        current = latest.get(key)
        if current is None or _as_utc(tx.occurred_at) > _as_utc(current.occurred_at):
            latest[key] = tx
    return latest


def format_activity(
    when: Optional[datetime.datetime],
    by: Optional[str],
    now: datetime.datetime,
    tz: Optional[datetime.tzinfo] = None,
) -> str:
    if when is None:
        return f"No activity in last {settings.ACTIVITY_WINDOW_DAYS} days"
    days = days_since(when, now, tz)
    if days <= 0:
        label = "Today"
    elif days == 1:
        label = "Yesterday"
    else:
        label = f"{days}d ago"
    return f"{label} by {by or '-'}"


def _tank_freshness(
    tank: Tank,
    manual: Optional[UpdateLogEntry],
    supply: Optional[InventoryTransaction],
    now: datetime.datetime,
    tz: datetime.tzinfo,
) -> TankFreshness:
    # Sin log manual se usa el campo lastUpdated del propio tanque
    if manual is not None:
        last_update, last_update_by = manual.updatedAt, manual.updatedBy
    else:
        last_update, last_update_by = tank.lastUpdated, tank.lastUpdatedBy

    return TankFreshness(
        tankId=tank.id,
        oilTypeName=tank.oilTypeName,
        currentLevel=tank.currentLevel,
        capacity=tank.capacity,
        percentage=tank.percentage,
        updateStatus=classify_staleness(last_update, now, tz),
        lastUpdate=last_update,
        lastUpdateBy=last_update_by,
        daysSinceUpdate=days_since(last_update, now, tz) if last_update else None,
        lastManualUpdate=manual.updatedAt if manual else None,
        lastManualUpdateBy=manual.updatedBy if manual else None,
        manualUpdateDisplay=format_activity(
            manual.updatedAt if manual else None,
            manual.updatedBy if manual else None,
            now, tz,
        ),
        lastSupplyLoading=supply.occurred_at if supply else None,
        lastSupplyLoadingBy=supply.actor if supply else None,
        supplyUpdateDisplay=format_activity(
            supply.occurred_at if supply else None,
            supply.actor if supply else None,
            now, tz,
        ),
    )


def build_branch_rollups(
    branches: Iterable[Mapping[str, Any]],
    tanks: Iterable[Tank],
    logs: Iterable[UpdateLogEntry],
    transactions: Iterable[InventoryTransaction] = (),
    now: Optional[datetime.datetime] = None,
    tz: Optional[datetime.tzinfo] = None,
) -> List[BranchRollup]:
    """
    Estado de actualizacion por sucursal a partir de la antiguedad de cada tanque.
    Las sucursales sin tanques tambien aparecen en el resultado.
    """
    tz = tz or get_local_timezone()
    now = now or datetime.datetime.now(pytz.utc)

    branch_list = [b for b in branches if isinstance(b, Mapping)]
    branch_names = {branch_identifier(b): str(b.get("name") or branch_identifier(b)) for b in branch_list}
    tanks_by_branch = group_tanks_by_branch(tanks)
    manual_index = latest_updates_by_tank(logs, branch_names)
    supply_index = latest_supply_by_tank(transactions, branch_names)

    rollups: List[BranchRollup] = []
    for branch in branch_list:
        branch_id = branch_identifier(branch)
        details = [
            _tank_freshness(
                tank,
                manual_index.get((tank.branchName, tank.oilTypeName)),
                supply_index.get((tank.branchName, tank.oilTypeName)),
                now, tz,
            )
            for tank in tanks_by_branch.get(branch_id, [])
        ]
        counts = Counter(detail.updateStatus for detail in details)
        updates = [d.lastUpdate for d in details if d.lastUpdate is not None]

        rollups.append(BranchRollup(
            branchId=branch_id,
            branchName=branch_names[branch_id],
            status=rollup_branch([d.updateStatus for d in details]),
            totalTanks=len(details),
            recentlyUpdatedTanks=counts[StalenessTier.recent],
            staleTanks=counts[StalenessTier.stale],
            oldTanks=counts[StalenessTier.old],
            neverUpdatedTanks=counts[StalenessTier.never],
            lastUpdate=max(updates, key=_as_utc) if updates else None,
            tankDetails=details,
        ))

    logger.info("Computed update rollups for %d branches", len(rollups))
    return rollups

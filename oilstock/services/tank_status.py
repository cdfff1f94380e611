# oilstock/services/tank_status.py
import datetime
import logging
import math
from typing import Any, Dict, Iterable, Iterator, List, Mapping, Optional, Tuple, Union

from oilstock.models.inventory import TankStatus, UNKNOWN_OIL_TYPE
from oilstock.schemas.inventory import OilType, Tank

logger = logging.getLogger(__name__)

CRITICAL_MAX_PCT = 5
LOW_MAX_PCT = 25
FULL_MIN_PCT = 95


def fill_percentage(current_level: float, capacity: float) -> float:
    """ Porcentaje de llenado; capacidad 0 (o negativa) se define como 0% """
    if capacity <= 0:
        return 0.0
    return current_level / capacity * 100


def classify_tank_status(current_level: float, capacity: float) -> TankStatus:
    """
    Clasifica el nivel de un tanque. El orden importa: critical se evalua
    primero y full al final, asi los bordes (5, 25, 95) son deterministas.
    """
    percentage = fill_percentage(current_level, capacity)
    if percentage <= CRITICAL_MAX_PCT:
        return TankStatus.critical
    if percentage <= LOW_MAX_PCT:
        return TankStatus.low
    if percentage >= FULL_MIN_PCT:
        return TankStatus.full
    return TankStatus.normal


def branch_identifier(branch: Mapping[str, Any]) -> str:
    return str(branch.get("_id", branch.get("id", "")))


def _to_float(value: Any) -> float:
    try:
        number = float(value)
    except (TypeError, ValueError):
        return 0.0
    return number if math.isfinite(number) else 0.0


def _to_optional_float(value: Any) -> Optional[float]:
    if value is None:
        return None
    return _to_float(value)


def _to_optional_str(value: Any) -> Optional[str]:
    return None if value is None else str(value)


def parse_timestamp(value: Any) -> Optional[datetime.datetime]:
    if isinstance(value, datetime.datetime):
        return value
    if isinstance(value, str) and value:
        try:
            return datetime.datetime.fromisoformat(value.replace("Z", "+00:00"))
        except ValueError:
            return None
    return None


def _iter_embedded_tanks(
    branch: Mapping[str, Any]
) -> Iterator[Tuple[Union[int, str], str, Any]]:
    """
    Normaliza las dos formas historicas de 'oilTanks':
    lista (id = <branch>_tank_<i>) o diccionario (id = <branch>_<clave>).
    """
    branch_id = branch_identifier(branch)
    raw = branch.get("oilTanks")

    if isinstance(raw, list):
        for index, record in enumerate(raw):
            yield index, f"{branch_id}_tank_{index}", record
    elif isinstance(raw, Mapping):
        for key, record in raw.items():
            yield str(key), f"{branch_id}_{key}", record
    elif raw is not None:
        logger.warning(
            "Branch %s has oilTanks of unsupported type %s; ignoring",
            branch_id, type(raw).__name__,
        )


def extract_tanks(
    branches: Iterable[Mapping[str, Any]],
    oil_types: Iterable[OilType],
) -> List[Tank]:
    """
    Aplana los tanques embebidos de todas las sucursales en una lista uniforme,
    resolviendo el nombre del tipo de aceite y calculando el estado.
    Nunca lanza por datos mal formados: esa sucursal simplemente no aporta.
    """
    oil_type_names = {ot.id: ot.name for ot in oil_types}
    tanks: List[Tank] = []

    for branch in branches:
        if not isinstance(branch, Mapping):
            logger.warning("Skipping branch record of type %s", type(branch).__name__)
            continue

        branch_id = branch_identifier(branch)
        branch_name = str(branch.get("name") or branch_id)

        for tank_key, tank_id, record in _iter_embedded_tanks(branch):
            if not isinstance(record, Mapping):
                logger.warning("Skipping malformed tank %s in branch %s", tank_id, branch_name)
                continue

            oil_type_id = str(record.get("oilTypeId") or "unknown")
            oil_type_name = str(
                oil_type_names.get(oil_type_id)
                or record.get("oilTypeName")
                or UNKNOWN_OIL_TYPE
            )
            current_level = _to_float(record.get("currentLevel"))
            capacity = _to_float(record.get("capacity"))
            daily_usage = _to_optional_float(record.get("dailyUsage"))

            tanks.append(Tank(
                id=tank_id,
                branchId=branch_id,
                branchName=branch_name,
                tankKey=tank_key,
                oilTypeId=oil_type_id,
                oilTypeName=oil_type_name,
                currentLevel=current_level,
                capacity=capacity,
                percentage=round(fill_percentage(current_level, capacity), 1),
                status=classify_tank_status(current_level, capacity),
                lastUpdated=parse_timestamp(record.get("lastUpdated")),
                lastUpdatedBy=_to_optional_str(record.get("lastUpdatedBy")),
                dailyUsage=daily_usage,
                stockMonths=stock_months(current_level, daily_usage),
            ))

    return tanks


def stock_months(current_level: float, daily_usage: Optional[float]) -> Optional[float]:
    """ currentLevel / dailyUsage, como lo muestra el tablero ("Stock Month") """
    if not daily_usage or daily_usage <= 0:
        return None
    return round(current_level / daily_usage, 2)


def index_tanks(tanks: Iterable[Tank]) -> Dict[str, Tank]:
    return {tank.id: tank for tank in tanks}


def group_tanks_by_branch(tanks: Iterable[Tank]) -> Dict[str, List[Tank]]:
    """ Agrupa por branchId conservando el orden de aparicion """
    grouped: Dict[str, List[Tank]] = {}
    for tank in tanks:
        grouped.setdefault(tank.branchId, []).append(tank)
    return grouped

# oilstock/services/csv_templates.py
import csv
import datetime
import io
import logging
import math
from typing import Any, Dict, Iterable, Iterator, List, Optional, Sequence, Tuple

from oilstock.core.exceptions import CsvHeaderError, CsvParseError
from oilstock.models.inventory import TemplateKind, UNKNOWN, UNKNOWN_OIL_TYPE
from oilstock.schemas.inventory import Tank, UpdateLogEntry, ImportRowError, ImportResult
from oilstock.services.staleness import get_local_timezone, to_local
from oilstock.services.tank_status import index_tanks

logger = logging.getLogger(__name__)

BRANCH_NAME = "Branch Name"
OIL_TYPE = "Oil Type"
CURRENT_LEVEL = "Current Level (L)"
NEW_LEVEL = "New Level (L)"
CAPACITY = "Capacity (L)"
TANK_ID = "Tank ID"
MAD = "MAD"

BULK_TEMPLATE_HEADERS = [BRANCH_NAME, OIL_TYPE, CURRENT_LEVEL, NEW_LEVEL, CAPACITY, TANK_ID]
STOCK_REPORT_HEADERS = [BRANCH_NAME, OIL_TYPE, CURRENT_LEVEL, CAPACITY, "Status", "Export Date"]
REQUIRED_IMPORT_HEADERS = [BRANCH_NAME, OIL_TYPE, NEW_LEVEL, TANK_ID]
DAILY_USAGE_HEADERS = [BRANCH_NAME, OIL_TYPE, MAD, "Month", "Year"]
DAILY_USAGE_REQUIRED_HEADERS = [BRANCH_NAME, OIL_TYPE, MAD]
UPDATE_LOG_HEADERS = [
    "Date & Time", "Branch", "Oil Type", "Old Level (L)", "New Level (L)",
    "Change (L)", "Updated By", "Tank ID", "Notes",
]


def format_liters(value: float) -> str:
    """ 480.0 -> '480', 12.5 -> '12.5' """
    value = float(value)
    return str(int(value)) if value.is_integer() else str(value)


def _render_csv(headers: Sequence[str], rows: Iterable[Sequence[Any]]) -> str:
    buffer = io.StringIO()
    writer = csv.writer(buffer, quoting=csv.QUOTE_ALL, lineterminator="\n")
    writer.writerow(headers)
    for row in rows:
        writer.writerow(row)
    return buffer.getvalue()


def export_bulk_template(tanks: Iterable[Tank], prefill_new_level: bool = False) -> str:
    """
    Plantilla de actualizacion masiva. 'New Level (L)' va vacia para que
    el operador la llene, salvo que se pida prellenarla con el nivel actual.
    """
    return _render_csv(BULK_TEMPLATE_HEADERS, (
        [
            tank.branchName,
            tank.oilTypeName,
            format_liters(tank.currentLevel),
            format_liters(tank.currentLevel) if prefill_new_level else "",
            format_liters(tank.capacity),
            tank.id,
        ]
        for tank in tanks
    ))


def export_stock_report(tanks: Iterable[Tank], export_date: Optional[datetime.date] = None) -> str:
    export_date = export_date or datetime.datetime.now(get_local_timezone()).date()
    return _render_csv(STOCK_REPORT_HEADERS, (
        [
            tank.branchName,
            tank.oilTypeName,
            format_liters(tank.currentLevel),
            format_liters(tank.capacity),
            tank.status.value,
            export_date.isoformat(),
        ]
        for tank in tanks
    ))


def export_template(
    kind: TemplateKind,
    tanks: Iterable[Tank],
    export_date: Optional[datetime.date] = None,
    prefill_new_level: bool = False,
) -> str:
    if kind == TemplateKind.bulk:
        return export_bulk_template(tanks, prefill_new_level=prefill_new_level)
    if kind == TemplateKind.daily_usage:
        return export_daily_usage_template(tanks, today=export_date)
    return export_stock_report(tanks, export_date=export_date)


def export_update_logs(
    logs: Iterable[UpdateLogEntry],
    tz: Optional[datetime.tzinfo] = None,
) -> str:
    """ Historial de cambios de nivel con la diferencia firmada (+20 / -5) """
    tz = tz or get_local_timezone()
    rows = []
    for log in logs:
        when = to_local(log.updatedAt, tz).strftime("%d/%m/%Y %H:%M:%S") if log.updatedAt else UNKNOWN
        change = log.newLevel - log.previousLevel
        rows.append([
            when,
            log.branchName or "Unknown Branch",
            log.oilTypeName or UNKNOWN_OIL_TYPE,
            format_liters(log.previousLevel),
            format_liters(log.newLevel),
            f"+{format_liters(change)}" if change >= 0 else format_liters(change),
            log.updatedBy or "Unknown User",
            log.tankId or "N/A",
            log.notes or "N/A",
        ])
    return _render_csv(UPDATE_LOG_HEADERS, rows)


def export_daily_usage_template(tanks: Iterable[Tank], today: Optional[datetime.date] = None) -> str:
    """
    Plantilla de MAD (consumo diario promedio del mes): una fila por
    (sucursal, aceite), prellenada con el valor vigente o 0.
    """
    today = today or datetime.datetime.now(get_local_timezone()).date()
    rows = []
    seen = set()
    for tank in tanks:
        key = (tank.branchName, tank.oilTypeName)
        if key in seen:
            continue
        seen.add(key)
        rows.append([
            tank.branchName,
            tank.oilTypeName,
            format_liters(tank.dailyUsage or 0),
            today.month,
            today.year,
        ])
    return _render_csv(DAILY_USAGE_HEADERS, rows)


def _read_records(text: str, required: Sequence[str]) -> Iterator[Tuple[int, Dict[str, str]]]:
    """
    Recorre el CSV devolviendo (numero de fila, fila por columna).
    La fila 1 es el encabezado; las filas en blanco se saltan pero cuentan.
    """
    reader = csv.reader(io.StringIO(text.lstrip("\ufeff")))
    headers: Optional[List[str]] = None
    row_number = 0

    while True:
        try:
            values = next(reader)
        except StopIteration:
            break
        except csv.Error as e:
            raise CsvParseError(row_number + 1, str(e))
        row_number += 1

        if not any(cell.strip() for cell in values):
            continue

        if headers is None:
            headers = [cell.strip() for cell in values]
            missing = [h for h in required if h not in headers]
            if missing:
                raise CsvHeaderError(missing)
            continue

        yield row_number, {
            header: values[index].strip() if index < len(values) else ""
            for index, header in enumerate(headers)
        }

    if headers is None:
        raise CsvHeaderError(list(required))


def _parse_number(raw_value: str) -> float:
    """ '' o texto no numerico -> nan """
    try:
        number = float(raw_value)
    except ValueError:
        return math.nan
    return number if math.isfinite(number) else math.nan


def import_template(text: str, tanks: Iterable[Tank]) -> ImportResult:
    """
    Lee una plantilla editada y la convierte en un lote de cambios.

    Si falta una columna obligatoria (o el archivo no es CSV legible) se lanza
    CsvFormatError antes de entregar cualquier fila. Los errores por fila se
    acumulan todos; el lote solo se entrega cuando no hay ninguno. Toda fila
    no vacia debe traer un 'New Level (L)' numerico.
    """
    tanks_by_id = index_tanks(tanks)
    batch: Dict[str, float] = {}
    seen_on_row: Dict[str, int] = {}
    errors: List[ImportRowError] = []

    for row_number, row in _read_records(text, REQUIRED_IMPORT_HEADERS):
        tank_id = row[TANK_ID]
        raw_level = row[NEW_LEVEL]
        new_level = _parse_number(raw_level)

        if not tank_id or math.isnan(new_level):
            errors.append(ImportRowError(
                row=row_number, tankId=tank_id or None,
                message=f"Row {row_number}: Invalid tank ID or new level ('{tank_id}', '{raw_level}')",
            ))
            continue

        tank = tanks_by_id.get(tank_id)
        if tank is None:
            errors.append(ImportRowError(
                row=row_number, tankId=tank_id,
                message=f"Row {row_number}: Tank not found - {tank_id}",
            ))
            continue

        if new_level < 0 or new_level > tank.capacity:
            errors.append(ImportRowError(
                row=row_number, tankId=tank_id,
                message=(
                    f"Row {row_number}: Invalid level {format_liters(new_level)}L for "
                    f"{tank.branchName} - {tank.oilTypeName} (capacity: {format_liters(tank.capacity)}L)"
                ),
            ))
            continue

        if tank_id in seen_on_row:
            errors.append(ImportRowError(
                row=row_number, tankId=tank_id,
                message=f"Row {row_number}: Duplicate Tank ID {tank_id} (first seen on row {seen_on_row[tank_id]})",
            ))
            continue

        seen_on_row[tank_id] = row_number
        batch[tank_id] = new_level

    if errors:
        logger.warning("CSV import rejected with %d row error(s)", len(errors))
        return ImportResult(errors=errors)

    logger.info("CSV import staged %d tank updates", len(batch))
    return ImportResult(batch=batch)


def import_daily_usage(text: str, tanks: Iterable[Tank]) -> ImportResult:
    """
    Lee la plantilla de MAD. Cada fila se asocia por (sucursal, aceite) y el
    valor se aplica a todos los tanques de esa sucursal con ese aceite.
    El resultado es tanque -> consumo diario, o la lista completa de errores.
    """
    tanks_by_name: Dict[Tuple[str, str], List[Tank]] = {}
    for tank in tanks:
        tanks_by_name.setdefault((tank.branchName, tank.oilTypeName), []).append(tank)

    usage: Dict[str, float] = {}
    seen_on_row: Dict[Tuple[str, str], int] = {}
    errors: List[ImportRowError] = []

    for row_number, row in _read_records(text, DAILY_USAGE_REQUIRED_HEADERS):
        key = (row[BRANCH_NAME], row[OIL_TYPE])
        label = f"{key[0]} - {key[1]}"
        daily_usage = _parse_number(row[MAD])

        if not key[0] or not key[1]:
            errors.append(ImportRowError(
                row=row_number, message=f"Row {row_number}: Missing branch name or oil type",
            ))
            continue

        if math.isnan(daily_usage) or daily_usage < 0:
            errors.append(ImportRowError(
                row=row_number, message=f"Row {row_number}: Invalid MAD '{row[MAD]}' for {label}",
            ))
            continue

        matches = tanks_by_name.get(key)
        if not matches:
            errors.append(ImportRowError(
                row=row_number, message=f"Row {row_number}: Tank not found - {label}",
            ))
            continue

        if key in seen_on_row:
            errors.append(ImportRowError(
                row=row_number,
                message=f"Row {row_number}: Duplicate row for {label} (first seen on row {seen_on_row[key]})",
            ))
            continue

        seen_on_row[key] = row_number
        for tank in matches:
            usage[tank.id] = daily_usage

    if errors:
        logger.warning("MAD import rejected with %d row error(s)", len(errors))
        return ImportResult(errors=errors)

    logger.info("MAD import staged daily usage for %d tanks", len(usage))
    return ImportResult(batch=usage)

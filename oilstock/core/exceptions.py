# oilstock/core/exceptions.py
from typing import List


class InventoryError(Exception):
    """Error base del nucleo de inventario."""


class EmptyBatchError(InventoryError):
    def __init__(self, message: str = "No staged tank level changes to submit"):
        super().__init__(message)


class BatchValidationError(InventoryError):
    """
    El lote contiene al menos una violacion (capacidad, negativo, etc).
    Bloquea el commit completo: no se escribe nada.
    """

    def __init__(self, violations: list):
        self.violations = violations
        super().__init__(f"Batch rejected with {len(violations)} violation(s)")


class CsvFormatError(InventoryError):
    """El archivo no se puede leer como CSV con las columnas esperadas."""


class CsvHeaderError(CsvFormatError):
    def __init__(self, missing: List[str]):
        self.missing = missing
        super().__init__(f"Missing required columns: {', '.join(missing)}")


class CsvParseError(CsvFormatError):
    def __init__(self, row: int, reason: str):
        self.row = row
        self.reason = reason
        super().__init__(f"Row {row}: Unreadable CSV ({reason})")


class BranchNotFoundError(InventoryError):
    def __init__(self, branch_id: str):
        self.branch_id = branch_id
        super().__init__(f"Branch not found: {branch_id}")


class TankNotFoundError(InventoryError):
    def __init__(self, tank_id: str):
        self.tank_id = tank_id
        super().__init__(f"Tank not found: {tank_id}")


class TankCapacityError(InventoryError):
    def __init__(self, new_level: float, capacity: float):
        self.new_level = new_level
        self.capacity = capacity
        super().__init__(f"Level {new_level:g}L outside allowed range 0-{capacity:g}L")

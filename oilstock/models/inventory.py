# oilstock/models/inventory.py
import enum

UNKNOWN_OIL_TYPE = "Unknown Oil Type"
UNKNOWN = "Unknown"

class TankStatus(str, enum.Enum):
    critical = "critical"
    low = "low"
    normal = "normal"
    full = "full"

class StalenessTier(str, enum.Enum):
    never = "never"
    recent = "recent"
    stale = "stale"
    old = "old"

class BranchRollupStatus(str, enum.Enum):
    needs_attention = "needs-attention"
    partially_updated = "partially-updated"
    fully_updated = "fully-updated"

class CommitOutcome(str, enum.Enum):
    success = "success"
    partial = "partial"
    failed = "failed"

class ViolationKind(str, enum.Enum):
    exceeds_capacity = "exceeds_capacity"
    negative_level = "negative_level"
    invalid_number = "invalid_number"
    unknown_tank = "unknown_tank"

class TemplateKind(str, enum.Enum):
    bulk = "bulk"
    stock = "stock"
    daily_usage = "daily-usage"

class TransactionType(str, enum.Enum):
    loading = "loading"
    supply = "supply"
    delivery = "delivery"

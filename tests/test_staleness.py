import datetime

import pytest
import pytz

from oilstock.models.inventory import StalenessTier, BranchRollupStatus
from oilstock.schemas.inventory import UpdateLogEntry, InventoryTransaction
from oilstock.services.staleness import (
    build_branch_rollups,
    classify_staleness,
    days_since,
    format_activity,
    latest_updates_by_tank,
    rollup_branch,
)

BAHRAIN = pytz.timezone("Asia/Bahrain")


def local(day, hour=12):
    return BAHRAIN.localize(datetime.datetime(2024, 8, day, hour))


@pytest.fixture
def now():
    return local(10)


class TestClassifyStaleness:

    def test_day_ten_scenario(self, now):
        assert classify_staleness(local(9), now, BAHRAIN) == StalenessTier.recent
        assert classify_staleness(local(5), now, BAHRAIN) == StalenessTier.stale
        assert classify_staleness(local(1), now, BAHRAIN) == StalenessTier.old
        assert classify_staleness(None, now, BAHRAIN) == StalenessTier.never

    def test_counts_calendar_days_not_hours(self, now):
        # 23:00 del dia 8 -> 2 dias calendario aunque solo pasaron 37 horas
        assert days_since(local(8, 23), now, BAHRAIN) == 2
        assert classify_staleness(local(8, 23), now, BAHRAIN) == StalenessTier.stale

    def test_same_day_and_boundaries(self, now):
        assert classify_staleness(local(10, 1), now, BAHRAIN) == StalenessTier.recent
        assert classify_staleness(local(4), now, BAHRAIN) == StalenessTier.stale   # 6 dias
        assert classify_staleness(local(3), now, BAHRAIN) == StalenessTier.old     # 7 dias

    def test_naive_datetimes_are_utc(self, now):
        # 22:00 UTC del dia 9 = 01:00 del dia 10 en Bahrein
        assert days_since(datetime.datetime(2024, 8, 9, 22), now, BAHRAIN) == 0


class TestRollupBranch:

    def test_all_outdated_needs_attention(self):
        tiers = [StalenessTier.never, StalenessTier.old]
        assert rollup_branch(tiers) == BranchRollupStatus.needs_attention

    def test_all_recent_fully_updated(self):
        assert rollup_branch([StalenessTier.recent] * 3) == BranchRollupStatus.fully_updated

    def test_mixed_is_partial(self):
        assert rollup_branch([StalenessTier.recent, StalenessTier.old]) == BranchRollupStatus.partially_updated
        assert rollup_branch([StalenessTier.stale]) == BranchRollupStatus.partially_updated

    def test_branch_without_tanks_is_fully_updated(self):
        assert rollup_branch([]) == BranchRollupStatus.fully_updated


def _log(branch, oil, when, by="Warehouse Team"):
    return UpdateLogEntry(branchName=branch, oilTypeName=oil, newLevel=1, updatedBy=by, updatedAt=when)


class TestBuildBranchRollups:

    def test_rollups_from_logs(self, branch_docs, tanks, now):
        logs = [
            _log("Main Depot - Manama", "Premium Diesel", local(9)),
            _log("Main Depot - Manama", "Super Gasoline 95", local(5)),
            _log("Main Depot - Manama", "Super Gasoline 95", local(1), by="Older"),
        ]
        rollups = {r.branchId: r for r in build_branch_rollups(branch_docs, tanks, logs, now=now, tz=BAHRAIN)}

        main = rollups["b1"]
        assert main.status == BranchRollupStatus.partially_updated
        assert main.totalTanks == 2
        assert main.recentlyUpdatedTanks == 1
        assert main.staleTanks == 1
        assert main.lastUpdate == local(9)
        assert main.tankDetails[1].lastUpdateBy == "Warehouse Team"

        assert rollups["b2"].status == BranchRollupStatus.needs_attention
        assert rollups["b2"].neverUpdatedTanks == 1

        assert rollups["b3"].totalTanks == 0
        assert rollups["b3"].status == BranchRollupStatus.fully_updated

    def test_tank_last_updated_used_without_log(self, now):
        from oilstock.services.tank_status import extract_tanks
        branches = [{"_id": "b1", "name": "Main", "oilTanks": [
            {"oilTypeId": "o", "currentLevel": 1, "capacity": 2, "lastUpdated": local(10, 8)},
        ]}]
        rollup = build_branch_rollups(branches, extract_tanks(branches, []), [], now=now, tz=BAHRAIN)[0]
        assert rollup.status == BranchRollupStatus.fully_updated
        assert rollup.tankDetails[0].manualUpdateDisplay == "No activity in last 30 days"

    def test_logs_matched_by_branch_id(self, branch_docs, tanks, now):
        log = UpdateLogEntry(
            branchId="b2", branchName="Old Name", oilTypeName="Premium Diesel",
            newLevel=1, updatedAt=local(10, 9),
        )
        rollups = {r.branchId: r for r in build_branch_rollups(branch_docs, tanks, [log], now=now, tz=BAHRAIN)}
        assert rollups["b2"].status == BranchRollupStatus.fully_updated

    def test_supply_activity_is_reported(self, branch_docs, tanks, now):
        transactions = [
            InventoryTransaction(type="supply", branchName="Main Depot - Manama",
                                 oilTypeName="Premium Diesel", driverName="Ali Hassan", timestamp=local(8)),
            InventoryTransaction(type="delivery", branchName="Main Depot - Manama",
                                 oilTypeName="Premium Diesel", driverName="Omar", timestamp=local(10)),
        ]
        rollup = build_branch_rollups(branch_docs, tanks, [], transactions, now=now, tz=BAHRAIN)[0]
        detail = rollup.tankDetails[0]
        assert detail.lastSupplyLoadingBy == "Ali Hassan"
        assert detail.supplyUpdateDisplay == "2d ago by Ali Hassan"
        # los movimientos de chofer no cuentan como actualizacion manual
        assert detail.updateStatus == StalenessTier.never


def test_latest_update_wins():
    logs = [
        _log("A", "Diesel", local(2), by="first"),
        _log("A", "Diesel", local(6), by="latest"),
        _log("A", "Diesel", local(4), by="middle"),
    ]
    assert latest_updates_by_tank(logs, {})[("A", "Diesel")].updatedBy == "latest"


def test_format_activity(now):
    assert format_activity(local(10, 9), "Sara", now, BAHRAIN) == "Today by Sara"
    assert format_activity(local(9), "Sara", now, BAHRAIN) == "Yesterday by Sara"


def test_tanks_sharing_an_oil_type_share_freshness(now):
    # los registros se asocian por (sucursal, aceite): dos tanques del mismo
    # aceite en una sucursal no se distinguen
    from oilstock.services.tank_status import extract_tanks
    branches = [{"_id": "b1", "name": "Main", "oilTanks": [
        {"oilTypeId": "oil-001", "oilTypeName": "Premium Diesel", "currentLevel": 100, "capacity": 500},
        {"oilTypeId": "oil-001", "oilTypeName": "Premium Diesel", "currentLevel": 400, "capacity": 500},
    ]}]
    logs = [_log("Main", "Premium Diesel", local(9), by="Night Shift")]
    rollup = build_branch_rollups(branches, extract_tanks(branches, []), logs, now=now, tz=BAHRAIN)[0]

    first, second = rollup.tankDetails
    assert first.tankId != second.tankId
    assert first.lastUpdate == second.lastUpdate == local(9)
    assert first.lastUpdateBy == second.lastUpdateBy == "Night Shift"
    assert first.updateStatus == second.updateStatus == StalenessTier.recent
    assert rollup.recentlyUpdatedTanks == 2

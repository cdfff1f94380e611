# seed_sample_data.py
import datetime
import logging

import pymongo

from oilstock.core.config import settings
from oilstock.core.logging import setup_logging

logger = logging.getLogger(__name__)

OIL_TYPES = [
    {"_id": "oil-001", "name": "Premium Diesel", "category": "Diesel", "active": True},
    {"_id": "oil-002", "name": "Super Gasoline 95", "category": "Gasoline", "active": True},
    {"_id": "oil-003", "name": "Industrial Lubricant", "category": "Lubricant", "active": True},
    {"_id": "oil-004", "name": "Marine Fuel Oil", "category": "Marine", "active": True},
]


def _sample_branches(now: datetime.datetime) -> list:
    yesterday = now - datetime.timedelta(days=1)
    last_week = now - datetime.timedelta(days=8)
    return [
        {
            "_id": "branch-001",
            "name": "Main Depot - Manama",
            "location": "Industrial Area, Manama, Bahrain",
            "active": True,
            # Forma lista: ids <branch>_tank_<i>
            "oilTanks": [
                {"oilTypeId": "oil-001", "currentLevel": 480, "capacity": 500,
                 "lastUpdated": yesterday, "lastUpdatedBy": "Warehouse Team"},
                {"oilTypeId": "oil-002", "currentLevel": 150, "capacity": 500,
                 "lastUpdated": last_week, "lastUpdatedBy": "Warehouse Team"},
            ],
        },
        {
            "_id": "branch-002",
            "name": "North Depot - Muharraq",
            "location": "Muharraq Industrial Zone, Bahrain",
            "active": True,
            # Forma diccionario: ids <branch>_<clave>
            "oilTanks": {
                "diesel": {"oilTypeId": "oil-001", "currentLevel": 20, "capacity": 500},
                "lube": {"oilTypeId": "oil-003", "currentLevel": 900, "capacity": 1200,
                         "lastUpdated": now, "lastUpdatedBy": "Warehouse Team"},
            },
        },
        {
            "_id": "branch-003",
            "name": "South Depot - Riffa",
            "location": "Riffa Industrial District, Bahrain",
            "active": True,
            "oilTanks": [
                {"oilTypeId": "oil-004", "currentLevel": 2000, "capacity": 8000},
            ],
        },
    ]


def seed_database():
    client = pymongo.MongoClient(settings.MONGO_URL)
    db = client[settings.MONGO_DB_NAME]
    now = datetime.datetime.now(datetime.timezone.utc)

    try:
        for name in (
            settings.BRANCHES_COLLECTION,
            settings.OIL_TYPES_COLLECTION,
            settings.TANK_LOGS_COLLECTION,
            settings.TRANSACTIONS_COLLECTION,
        ):
            logger.info("Vaciando colección '%s'...", name)
            db[name].delete_many({})

        db[settings.OIL_TYPES_COLLECTION].insert_many(OIL_TYPES)
        db[settings.BRANCHES_COLLECTION].insert_many(_sample_branches(now))
        db[settings.TRANSACTIONS_COLLECTION].insert_one({
            "type": "supply",
            "branchId": "branch-001",
            "branchName": "Main Depot - Manama",
            "oilTypeId": "oil-001",
            "oilTypeName": "Premium Diesel",
            "driverName": "Ali Hassan",
            "timestamp": now - datetime.timedelta(days=2),
            "createdAt": now - datetime.timedelta(days=2),
        })
        db[settings.TANK_LOGS_COLLECTION].create_index([("updatedAt", pymongo.DESCENDING)])
        logger.info("¡Datos de ejemplo cargados en '%s'!", settings.MONGO_DB_NAME)
    finally:
        client.close()

if __name__ == "__main__":
    setup_logging(settings.LOG_LEVEL)
    print("ADVERTENCIA: Esto eliminará TODOS los datos del almacén y cargará datos de ejemplo.")
    confirm = input("¿Estás seguro? Escribe 'si' para continuar: ")

    if confirm.lower() == 'si':
        seed_database()
    else:
        print("Operación cancelada.")

# oilstock/db/mongodb.py
import logging

import motor.motor_asyncio
from oilstock.core.config import settings

logger = logging.getLogger(__name__)

client: motor.motor_asyncio.AsyncIOMotorClient = None
db: motor.motor_asyncio.AsyncIOMotorDatabase = None

async def connect_to_mongo():
    global client, db
    logger.info("Iniciando conexión a MongoDB...")
    client = motor.motor_asyncio.AsyncIOMotorClient(settings.MONGO_URL, tz_aware=True)

    # Sucursales (con sus tanques embebidos), tipos de aceite, logs y transacciones
    db = client[settings.MONGO_DB_NAME]

    logger.info("Conectado a MongoDB. DB: '%s'", settings.MONGO_DB_NAME)

async def close_mongo_connection():
    global client
    if client:
        client.close()
        logger.info("Desconectado de MongoDB.")


def get_database() -> motor.motor_asyncio.AsyncIOMotorDatabase:
    """
    Dependencia de FastAPI:
    Devuelve la base de datos del almacén
    """
    if db is None:
        raise RuntimeError("MongoDB connection has not been initialised")
    return db

from typing import List

from pydantic_settings import BaseSettings

class Settings(BaseSettings):
    MONGO_URL: str = "mongodb://localhost:27017"
    MONGO_DB_NAME: str = "oilstock"

    #colecciones del almacen
    BRANCHES_COLLECTION: str = "branches"
    OIL_TYPES_COLLECTION: str = "oilTypes"
    TANK_LOGS_COLLECTION: str = "tankUpdateLogs"
    TRANSACTIONS_COLLECTION: str = "transactions"

    # Zona horaria usada para contar dias calendario (antiguedad de tanques)
    TIMEZONE: str = "Asia/Bahrain"
    RECENT_LOGS_LIMIT: int = 200
    ACTIVITY_WINDOW_DAYS: int = 30
    # Tamano maximo de un CSV subido (bytes)
    MAX_IMPORT_BYTES: int = 5 * 1024 * 1024

    LOG_LEVEL: str = "INFO"
    CORS_ORIGINS: List[str] = [
        "http://localhost:5173", # Puerto por defecto de Vite
        "http://localhost:3000", # Puerto por defecto de Create React App
        "http://localhost",
        "http://127.0.0.1:5173",
        "http://127.0.0.1:3000",
    ]

    class Config:
        env_file = ".env"

settings = Settings()

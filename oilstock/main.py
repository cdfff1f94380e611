from fastapi import FastAPI
from contextlib import asynccontextmanager
from oilstock.core.config import settings
from oilstock.core.logging import setup_logging
from oilstock.db.mongodb import connect_to_mongo, close_mongo_connection
from oilstock.api.endpoints import catalog, warehouse
from fastapi.middleware.cors import CORSMiddleware

setup_logging(settings.LOG_LEVEL)

# Evento de ciclo de vida para conectar y desconectar MongoDB al iniciar/apagar
@asynccontextmanager
async def lifespan(app: FastAPI):
    await connect_to_mongo()
    yield
    await close_mongo_connection()

app = FastAPI(
    title="API de Inventario de Aceites",
    description="Niveles de tanques por sucursal, actualizaciones masivas y plantillas CSV del almacén.",
    lifespan=lifespan
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,   # Lista de orígenes permitidos
    allow_credentials=True,    # Permite cookies/tokens de autorización
    allow_methods=["*"],       # Permite todos los métodos (GET, POST, etc.)
    allow_headers=["*"],       # Permite todos los headers
)

# Incluir los routers
app.include_router(catalog.router, prefix="/api", tags=["Catalog"])
app.include_router(warehouse.router, prefix="/api", tags=["Warehouse"])

@app.get("/api/health")
def health_check():
    return {"status": "ok"}

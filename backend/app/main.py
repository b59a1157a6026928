"""
=============================================================================
LUDO LOOTO ADMIN - Punto de Entrada Principal (FastAPI)
=============================================================================
Servidor del panel de administración de Ludo Looto.

Integra:
- FastAPI para la REST API de administración
- SQLAlchemy async para persistencia
- Middleware de seguridad y CORS
- Respuestas de error uniformes {success, message, status_code}
=============================================================================
"""

import logging
import time
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from ..config import settings
from ..database import SessionLocal, init_models
from .admin import router as admin_router
from .security import ensure_default_admin
from .settlement import SettlementError


logger = logging.getLogger(__name__)

VERSION = "0.1.0"


def configure_logging() -> None:
    logging.basicConfig(
        level=settings.LOG_LEVEL.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


# =============================================================================
# LIFECYCLE
# =============================================================================

@asynccontextmanager
async def lifespan(app: FastAPI):
    """Gestiona el ciclo de vida de la aplicación."""
    configure_logging()
    logger.info("[STARTUP] Iniciando servidor (%s)...", settings.ENVIRONMENT)
    await init_models()
    async with SessionLocal() as session:
        await ensure_default_admin(
            session,
            settings.DEFAULT_ADMIN_USERNAME,
            settings.DEFAULT_ADMIN_PASSWORD
        )
    logger.info("[STARTUP] Base de datos lista")
    yield
    logger.info("[SHUTDOWN] Cerrando servidor...")


# =============================================================================
# APLICACIÓN FASTAPI
# =============================================================================

app = FastAPI(
    title="Ludo Looto Admin API",
    description="""
    ## Back-office de Ludo Looto

    ### Características:
    - **Usuarios**: búsqueda, bloqueo y ajustes de saldo
    - **Salas**: corrección de ganador y cancelación con devolución
    - **Ledger**: transacciones con saldo antes/después y devoluciones
    - **Colas**: verificación de ganadores y aprobación de retiros
    """,
    version=VERSION,
    docs_url="/docs",
    redoc_url="/redoc",
    lifespan=lifespan
)


# =============================================================================
# MIDDLEWARE
# =============================================================================

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.middleware("http")
async def add_security_headers(request: Request, call_next):
    """Agrega headers de seguridad a las respuestas."""
    response = await call_next(request)
    response.headers["X-Content-Type-Options"] = "nosniff"
    response.headers["X-Frame-Options"] = "DENY"
    response.headers["X-XSS-Protection"] = "1; mode=block"
    response.headers["Referrer-Policy"] = "strict-origin-when-cross-origin"
    return response


# =============================================================================
# MANEJO DE ERRORES
# =============================================================================

def error_response(status_code: int, message: str, **extra) -> JSONResponse:
    content = {"success": False, "message": message, "status_code": status_code}
    content.update(extra)
    return JSONResponse(status_code=status_code, content=jsonable_encoder(content))


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException):
    response = error_response(exc.status_code, str(exc.detail))
    if exc.headers:
        response.headers.update(exc.headers)
    return response


@app.exception_handler(SettlementError)
async def settlement_error_handler(request: Request, exc: SettlementError):
    logger.info("[SETTLEMENT] Rechazado %s %s: %s", request.method, request.url.path, exc.message)
    return error_response(exc.status_code, exc.message)


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    return error_response(422, "Validation error", errors=exc.errors())


# =============================================================================
# ENDPOINTS - HEALTH & STATUS
# =============================================================================

@app.get("/health")
async def health_check():
    """Endpoint de health check para Docker y load balancers."""
    return {
        "status": "healthy",
        "service": "ludo-looto-admin",
        "version": VERSION,
        "timestamp": time.time()
    }


@app.get("/")
async def root():
    """Endpoint raíz con información básica del servicio."""
    return {
        "message": "Ludo Looto Admin API",
        "docs": "/docs",
        "health": "/health",
        "admin": f"{settings.API_PREFIX}/admin",
        "version": VERSION
    }


# =============================================================================
# ROUTERS
# =============================================================================

app.include_router(admin_router, prefix=settings.API_PREFIX)

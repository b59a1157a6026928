"""
=============================================================================
LUDO LOOTO ADMIN - Configuración
=============================================================================
Settings leídos del entorno (y de un archivo .env si existe).
=============================================================================
"""

import os
from decimal import Decimal

from dotenv import load_dotenv

load_dotenv()


class Settings:
    """Configuración global del backend de administración."""

    ENVIRONMENT = os.getenv("ENVIRONMENT", "development")
    DEBUG = os.getenv("DEBUG", "False") == "True"

    # Base de datos
    DATABASE_URL = os.getenv("DATABASE_URL", "sqlite+aiosqlite:///./ludo_admin.db")

    # JWT
    SECRET_KEY = os.getenv("SECRET_KEY", "change-me-in-production")
    JWT_ALGORITHM = os.getenv("JWT_ALGORITHM", "HS256")
    ACCESS_TOKEN_EXPIRE_MINUTES = int(os.getenv("ACCESS_TOKEN_EXPIRE_MINUTES", 1440))

    # Bloqueo de cuentas admin
    MAX_LOGIN_ATTEMPTS = int(os.getenv("MAX_LOGIN_ATTEMPTS", 5))
    LOGIN_LOCK_MINUTES = int(os.getenv("LOGIN_LOCK_MINUTES", 120))

    # Comisión de la plataforma sobre el pozo total (porcentaje)
    PLATFORM_FEE_PERCENT = Decimal(os.getenv("PLATFORM_FEE_PERCENT", "10"))

    # HTTP
    API_PREFIX = os.getenv("API_PREFIX", "/api")
    CORS_ORIGINS = [o.strip() for o in os.getenv("CORS_ORIGINS", "*").split(",") if o.strip()]

    LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")

    # Admin inicial (solo si la tabla de admins está vacía)
    DEFAULT_ADMIN_USERNAME = os.getenv("DEFAULT_ADMIN_USERNAME", "admin")
    DEFAULT_ADMIN_PASSWORD = os.getenv("DEFAULT_ADMIN_PASSWORD")


settings = Settings()

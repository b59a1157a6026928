"""
=============================================================================
LUDO LOOTO ADMIN - Autenticación de Administradores
=============================================================================
Implementa:
- Hash de contraseñas (PBKDF2-SHA256)
- Emisión y verificación de tokens JWT (HS256)
- Dependencia FastAPI que resuelve el admin autenticado
- Política de bloqueo por intentos fallidos
=============================================================================
"""

import logging
from datetime import timedelta
from typing import Any, Dict, Optional
from uuid import UUID

import jwt
from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from passlib.hash import pbkdf2_sha256
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from ..config import settings
from ..database import get_db_session
from ..models import Admin, AdminRole, utcnow


logger = logging.getLogger(__name__)


# =============================================================================
# CONFIGURACIÓN DE SEGURIDAD
# =============================================================================

class SecurityConfig:
    """Umbrales de autenticación del panel."""

    MAX_LOGIN_ATTEMPTS = settings.MAX_LOGIN_ATTEMPTS
    LOGIN_LOCK_MINUTES = settings.LOGIN_LOCK_MINUTES
    ACCESS_TOKEN_EXPIRE_MINUTES = settings.ACCESS_TOKEN_EXPIRE_MINUTES
    MIN_PASSWORD_LENGTH = 6


security = HTTPBearer(auto_error=False)


# =============================================================================
# CONTRASEÑAS
# =============================================================================

def hash_password(password: str) -> str:
    return pbkdf2_sha256.hash(password)


def verify_password(password: str, password_hash: str) -> bool:
    try:
        return pbkdf2_sha256.verify(password, password_hash)
    except ValueError:
        # Hash con formato inválido en la BD
        return False


# =============================================================================
# TOKENS JWT
# =============================================================================

def create_access_token(admin: Admin, expires_minutes: Optional[int] = None) -> str:
    """Firma un token para el admin con su rol y expiración."""
    minutes = expires_minutes if expires_minutes is not None else SecurityConfig.ACCESS_TOKEN_EXPIRE_MINUTES
    now = utcnow()
    payload = {
        "sub": str(admin.id),
        "role": admin.role.value,
        "iat": now,
        "exp": now + timedelta(minutes=minutes),
    }
    return jwt.encode(payload, settings.SECRET_KEY, algorithm=settings.JWT_ALGORITHM)


def decode_access_token(token: str) -> Dict[str, Any]:
    """Decodifica el token o lanza 401."""
    try:
        return jwt.decode(token, settings.SECRET_KEY, algorithms=[settings.JWT_ALGORITHM])
    except jwt.ExpiredSignatureError:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Token expired")
    except jwt.InvalidTokenError:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid token")


async def get_current_admin(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
    db: AsyncSession = Depends(get_db_session),
) -> Admin:
    """
    Verifica que el token pertenece a un administrador activo.
    """
    if credentials is None:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Not authenticated")

    payload = decode_access_token(credentials.credentials)
    try:
        admin_id = UUID(payload.get("sub", ""))
    except ValueError:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid token")

    admin = await db.get(Admin, admin_id)
    if admin is None or not admin.is_active:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid admin token")
    return admin


# =============================================================================
# LOGIN
# =============================================================================

async def authenticate_admin(db: AsyncSession, username: str, password: str) -> Admin:
    """
    Valida credenciales aplicando el bloqueo por intentos fallidos.
    Persiste el contador de intentos incluso cuando el login falla.
    """
    result = await db.execute(
        select(Admin).where(Admin.username == username, Admin.is_active.is_(True))
    )
    admin = result.scalar_one_or_none()
    if admin is None:
        logger.warning("[AUTH] Login fallido: usuario desconocido %r", username)
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid credentials")

    if admin.is_locked:
        logger.warning("[AUTH] Login bloqueado para %s", username)
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Account is temporarily locked due to too many failed login attempts"
        )

    if not verify_password(password, admin.password_hash):
        admin.register_failed_login(
            SecurityConfig.MAX_LOGIN_ATTEMPTS,
            SecurityConfig.LOGIN_LOCK_MINUTES
        )
        await db.commit()
        logger.warning(
            "[AUTH] Contraseña incorrecta para %s (intento %d)", username, admin.login_attempts
        )
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid credentials")

    admin.reset_login_attempts()
    admin.last_login = utcnow()
    await db.commit()
    logger.info("[AUTH] Login exitoso: %s", username)
    return admin


async def ensure_default_admin(db: AsyncSession, username: str, password: Optional[str]) -> Optional[Admin]:
    """Crea el super admin inicial si no existe ningún admin."""
    if not password:
        return None

    existing = await db.execute(select(Admin.id).limit(1))
    if existing.first() is not None:
        return None

    admin = Admin(
        username=username,
        password_hash=hash_password(password),
        role=AdminRole.SUPER_ADMIN,
    )
    db.add(admin)
    await db.commit()
    logger.info("[STARTUP] Admin inicial creado: %s", username)
    return admin

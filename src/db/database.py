"""
Database - Engine y sesiones SQLAlchemy async.

Se construye una sola vez al arrancar y se inyecta en los servicios
que persisten datos.
"""

import time
from contextlib import asynccontextmanager
from typing import AsyncIterator, Dict, Any, Optional

from sqlalchemy import text
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import (
    AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
)

from .models import Base
from ..utils.config import Settings, get_settings
from ..utils.errors import ConflictError
from ..utils.logger import get_logger

logger = get_logger(__name__)


class Database:
    """
    Manager de la conexión a base de datos.

    Crea el schema al iniciar (no hay migraciones) y entrega sesiones
    transaccionales: commit al salir, rollback ante cualquier error.
    """

    def __init__(self, url: Optional[str] = None, settings: Optional[Settings] = None):
        self.settings = settings or get_settings()
        self.url = url or self.settings.DATABASE_URL
        self.engine: Optional[AsyncEngine] = None
        self.session_factory: Optional[async_sessionmaker[AsyncSession]] = None
        self.is_connected = False

    async def initialize(self) -> bool:
        """
        Crea el engine y las tablas.

        Returns:
            True si inicialización exitosa
        """
        self.engine = create_async_engine(self.url, echo=self.settings.DATABASE_ECHO)
        self.session_factory = async_sessionmaker(self.engine, expire_on_commit=False)

        async with self.engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)

        self.is_connected = True
        logger.info("✅ Base de datos inicializada")
        return True

    @asynccontextmanager
    async def session(self) -> AsyncIterator[AsyncSession]:
        """
        Sesión transaccional.

        Raises:
            ConflictError: Si la base de datos reporta violación de unicidad
        """
        if self.session_factory is None:
            raise RuntimeError("Database no inicializada")

        session = self.session_factory()
        try:
            yield session
            await session.commit()
        except IntegrityError as e:
            await session.rollback()
            raise ConflictError("Conflicto de unicidad en base de datos", {"error": str(e.orig)}) from e
        except Exception:
            await session.rollback()
            raise
        finally:
            await session.close()

    async def health_check(self) -> Dict[str, Any]:
        """Verifica conectividad con un SELECT 1."""
        try:
            start_time = time.time()
            async with self.session() as session:
                await session.execute(text("SELECT 1"))

            return {
                "status": "healthy",
                "response_time_ms": (time.time() - start_time) * 1000
            }
        except Exception as e:
            logger.error(f"❌ Health check de base de datos falló: {e}")
            return {"status": "unhealthy", "error": str(e)}

    async def close(self):
        """Cierra el engine."""
        if self.engine:
            await self.engine.dispose()
        self.is_connected = False
        logger.info("🔌 Conexión a base de datos cerrada")

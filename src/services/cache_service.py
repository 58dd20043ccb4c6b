"""
Cache Service - Cache clave/valor y sesiones con Redis

Provee cache genérico con TTL (serialización JSON) y persistencia de
sesiones por usuario. Redis es el único estado mutable compartido entre
requests; todo acceso es por operaciones atómicas de una sola clave.
"""

import hashlib
import json
import time
from typing import Any, Dict, Optional
from datetime import datetime

import redis.asyncio as redis

from ..models.session import Session
from ..utils.config import Settings, get_settings
from ..utils.logger import get_logger

logger = get_logger(__name__)


def hash_text(text: str) -> str:
    """Hash determinista y corto para construir claves de cache."""
    return hashlib.sha256(text.encode("utf-8")).hexdigest()[:16]


class RedisConnectionManager:
    """
    Manager para conexiones Redis con pooling y health monitoring.

    Acepta un cliente ya construido (útil para tests con fakeredis).
    """

    def __init__(self, settings: Optional[Settings] = None, client: Optional[redis.Redis] = None):
        self.settings = settings or get_settings()
        self.pool: Optional[redis.ConnectionPool] = None
        self.client: Optional[redis.Redis] = client
        self.is_connected = client is not None
        self.last_health_check = datetime.now()
        self.connection_attempts = 0

    async def initialize(self) -> bool:
        """
        Inicializa conexión Redis con pooling.

        Returns:
            True si conexión exitosa
        """
        try:
            if self.client is None:
                config = self.settings.redis_config
                self.pool = redis.ConnectionPool.from_url(
                    config["url"],
                    max_connections=config["max_connections"],
                    retry_on_timeout=config["retry_on_timeout"],
                    socket_connect_timeout=config["socket_connect_timeout"],
                    socket_timeout=config["socket_timeout"],
                    health_check_interval=config["health_check_interval"],
                    decode_responses=True
                )
                self.client = redis.Redis(connection_pool=self.pool)

            await self.client.ping()

            self.is_connected = True
            self.connection_attempts = 0

            logger.info("✅ Redis connection establecida")
            return True

        except Exception as e:
            self.is_connected = False
            self.connection_attempts += 1

            logger.error(f"❌ Error conectando a Redis: {e}")
            return False

    async def ensure_connected(self) -> bool:
        """
        Asegura que la conexión esté activa.

        Returns:
            True si conexión está disponible
        """
        if not self.is_connected or not self.client:
            return await self.initialize()

        # Health check periódico
        now = datetime.now()
        if (now - self.last_health_check).seconds > 30:
            try:
                await self.client.ping()
                self.last_health_check = now
                return True
            except Exception:
                self.is_connected = False
                return await self.initialize()

        return True

    async def close(self):
        """Cierra conexiones Redis."""
        if self.client:
            await self.client.aclose()
        if self.pool:
            await self.pool.disconnect()

        self.is_connected = False
        logger.info("🔌 Redis connection cerrada")


class CacheService:
    """
    Cache genérico sobre Redis.

    - `set` propaga errores (el llamador decide si es fatal)
    - `get` devuelve None ante cualquier error
    """

    def __init__(self, redis_manager: RedisConnectionManager, default_ttl: Optional[int] = None):
        self.redis_manager = redis_manager
        self.default_ttl = default_ttl or redis_manager.settings.CACHE_DEFAULT_TTL

        self.stats = {
            "hits": 0,
            "misses": 0,
            "sets": 0,
            "deletes": 0,
            "errors": 0
        }

    @property
    def client(self) -> redis.Redis:
        return self.redis_manager.client

    async def set(self, key: str, value: Any, ttl: Optional[int] = None) -> bool:
        """
        Guarda un valor serializado como JSON con TTL.

        Args:
            key: Clave
            value: Valor serializable (los datetime se guardan como ISO)
            ttl: TTL en segundos (default: CACHE_DEFAULT_TTL)
        """
        try:
            await self.client.setex(key, ttl or self.default_ttl, json.dumps(value, default=str))
            self.stats["sets"] += 1
            return True
        except Exception as e:
            self.stats["errors"] += 1
            logger.error(f"❌ Error guardando en cache {key}: {e}")
            raise

    async def get(self, key: str) -> Optional[Any]:
        try:
            data = await self.client.get(key)
        except Exception as e:
            self.stats["errors"] += 1
            logger.error(f"❌ Error leyendo cache {key}: {e}")
            return None

        if data is None:
            self.stats["misses"] += 1
            return None

        self.stats["hits"] += 1
        try:
            return json.loads(data)
        except (TypeError, ValueError):
            logger.warning(f"⚠️ Valor de cache no es JSON válido: {key}")
            return None

    async def delete(self, key: str) -> bool:
        try:
            deleted = await self.client.delete(key)
            self.stats["deletes"] += deleted
            return deleted > 0
        except Exception as e:
            self.stats["errors"] += 1
            logger.error(f"❌ Error eliminando {key}: {e}")
            return False

    async def exists(self, key: str) -> bool:
        try:
            return bool(await self.client.exists(key))
        except Exception as e:
            logger.error(f"❌ Error verificando {key}: {e}")
            return False

    async def expire(self, key: str, ttl: int) -> bool:
        try:
            return bool(await self.client.expire(key, ttl))
        except Exception as e:
            logger.error(f"❌ Error aplicando TTL a {key}: {e}")
            return False

    async def ttl(self, key: str) -> int:
        try:
            return await self.client.ttl(key)
        except Exception as e:
            logger.error(f"❌ Error obteniendo TTL de {key}: {e}")
            return -2

    async def delete_pattern(self, pattern: str) -> int:
        """
        Elimina todas las claves que coinciden con un patrón glob.

        Returns:
            Número de claves eliminadas
        """
        try:
            keys = [key async for key in self.client.scan_iter(match=pattern)]
            if not keys:
                return 0
            deleted = await self.client.delete(*keys)
            self.stats["deletes"] += deleted
            logger.debug(f"🗑️ {deleted} claves eliminadas ({pattern})")
            return deleted
        except Exception as e:
            self.stats["errors"] += 1
            logger.error(f"❌ Error eliminando patrón {pattern}: {e}")
            return 0

    async def incr(self, key: str) -> Optional[int]:
        try:
            return await self.client.incr(key)
        except Exception as e:
            logger.error(f"❌ Error incrementando {key}: {e}")
            return None

    def get_stats(self) -> Dict[str, Any]:
        """Obtiene estadísticas del servicio."""

        hit_rate = 0.0
        total_reads = self.stats["hits"] + self.stats["misses"]
        if total_reads > 0:
            hit_rate = (self.stats["hits"] / total_reads) * 100

        return {
            **self.stats,
            "hit_rate_percent": hit_rate,
            "redis_connected": self.redis_manager.is_connected,
            "connection_attempts": self.redis_manager.connection_attempts
        }

    async def health_check(self) -> Dict[str, Any]:
        """
        Verifica salud de Redis.

        Returns:
            Estado de salud y métricas
        """
        try:
            start_time = time.time()

            if not await self.redis_manager.ensure_connected():
                return {"status": "unhealthy", "error": "Redis no disponible", "stats": self.get_stats()}

            await self.client.ping()
            return {
                "status": "healthy",
                "response_time_ms": (time.time() - start_time) * 1000,
                "stats": self.get_stats()
            }

        except Exception as e:
            logger.error(f"❌ Health check de Redis falló: {e}")
            return {"status": "unhealthy", "error": str(e), "stats": self.get_stats()}


class SessionService:
    """
    Persistencia de sesiones por usuario.

    Clave `session:{phone_number}` con TTL SESSION_TTL. La sesión es una
    optimización: si expira se reconstruye desde la base de datos.
    """

    prefix = "session:"

    def __init__(self, cache: CacheService, ttl: Optional[int] = None):
        self.cache = cache
        self.ttl = ttl or cache.redis_manager.settings.SESSION_TTL

    def _get_session_key(self, user_key: str) -> str:
        return f"{self.prefix}{user_key}"

    async def get_session(self, user_key: str) -> Optional[Session]:
        data = await self.cache.get(self._get_session_key(user_key))
        if data is None:
            return None

        try:
            return Session.model_validate(data)
        except ValueError as e:
            logger.warning(f"⚠️ Sesión inválida para {user_key}, se descarta: {e}")
            return None

    async def set_session(self, user_key: str, session: Session) -> bool:
        return await self.cache.set(
            self._get_session_key(user_key),
            session.model_dump(mode="json"),
            self.ttl
        )

    async def delete_session(self, user_key: str) -> bool:
        return await self.cache.delete(self._get_session_key(user_key))

    async def extend_session(self, user_key: str) -> bool:
        """Renueva el TTL sin modificar el contenido."""
        return await self.cache.expire(self._get_session_key(user_key), self.ttl)

"""
Configuración centralizada del sistema usando Pydantic Settings.

Maneja variables de entorno, validación y configuración por defecto
para todos los servicios del agente WhatsApp de soporte.
"""

from typing import List, Dict, Any, Optional, Annotated

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict


class Settings(BaseSettings):
    """
    Configuración centralizada del sistema.

    Carga automáticamente desde variables de entorno y .env file.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=True,
        extra="ignore"
    )

    # ================================
    # OpenAI / OpenRouter Configuration
    # ================================
    OPENAI_API_KEY: str = Field(default="", description="API key del modelo alojado")
    OPENAI_BASE_URL: Optional[str] = Field(
        default=None,
        description="Base URL compatible OpenAI (ej: https://openrouter.ai/api/v1)"
    )
    OPENAI_MODEL: str = Field(default="gpt-3.5-turbo", description="Modelo a usar")
    OPENAI_MAX_TOKENS: int = Field(default=1000, description="Tokens máximos por request")
    OPENAI_TEMPERATURE: float = Field(default=0.7, description="Temperature por defecto")
    OPENAI_TIMEOUT: float = Field(default=30.0, description="Timeout de conexión en segundos")

    # ================================
    # WhatsApp Cloud API Configuration
    # ================================
    WHATSAPP_TOKEN: str = Field(default="", description="Token de acceso WhatsApp Business")
    WHATSAPP_PHONE_NUMBER_ID: str = Field(default="", description="ID del número emisor")
    WHATSAPP_VERIFY_TOKEN: str = Field(default="", description="Token de verificación del webhook")
    WHATSAPP_APP_SECRET: Optional[str] = Field(default=None, description="Secret para X-Hub-Signature-256")
    WHATSAPP_API_VERSION: str = Field(default="v18.0", description="Versión Graph API")
    WHATSAPP_API_BASE_URL: str = Field(default="https://graph.facebook.com", description="URL Graph API")
    WHATSAPP_TIMEOUT: float = Field(default=15.0, description="Timeout HTTP en segundos")

    # ================================
    # Redis Configuration
    # ================================
    REDIS_URL: str = Field(default="redis://localhost:6379", description="URL de Redis")
    REDIS_MAX_CONNECTIONS: int = Field(default=20, description="Conexiones máximas a Redis")
    REDIS_RETRY_ON_TIMEOUT: bool = Field(default=True, description="Retry en timeout")
    CACHE_DEFAULT_TTL: int = Field(default=3600, description="TTL por defecto del cache")

    # ================================
    # Database Configuration
    # ================================
    DATABASE_URL: str = Field(
        default="sqlite+aiosqlite:///./whatsapp_agent.db",
        description="URL async de base de datos"
    )
    DATABASE_ECHO: bool = Field(default=False, description="Log de SQL generado")

    # ================================
    # Languages
    # ================================
    DEFAULT_LANGUAGE: str = Field(default="fr", description="Idioma por defecto")
    SUPPORTED_LANGUAGES: Annotated[List[str], NoDecode] = Field(default=["fr", "en"], description="Idiomas soportados")

    # ================================
    # Conversation & Session
    # ================================
    MAX_CONVERSATION_DURATION: int = Field(default=3600, description="Duración máxima de conversación (s)")
    SESSION_TTL: int = Field(default=3600, description="TTL de sesión en cache (s)")

    # ================================
    # Intent Classification
    # ================================
    INTENT_CONFIDENCE_THRESHOLD: float = Field(default=0.5, description="Threshold de confianza")
    KB_CONFIDENCE_THRESHOLD: float = Field(default=0.4, description="Threshold base de conocimiento")
    INTENT_CACHE_TTL: int = Field(default=1800, description="TTL cache de intenciones")
    LANGUAGE_CACHE_TTL: int = Field(default=3600, description="TTL cache de detección de idioma")

    # ================================
    # Knowledge Base
    # ================================
    KB_SIMILARITY_THRESHOLD: float = Field(default=0.6, description="Score mínimo semántico")
    KB_CACHE_TTL: int = Field(default=3600, description="TTL cache de entradas")
    KB_SEARCH_CACHE_TTL: int = Field(default=1800, description="TTL cache de búsquedas")
    KB_SEED_DEFAULT_ENTRIES: bool = Field(default=True, description="Cargar FAQ por defecto al iniciar")

    # ================================
    # Human Handoff
    # ================================
    AUTO_HANDOFF_KEYWORDS: Annotated[List[str], NoDecode] = Field(
        default=["agent", "humain", "human", "parler à une personne", "vraie personne"],
        description="Palabras clave que disparan transferencia a humano"
    )

    # ================================
    # Tickets
    # ================================
    TICKET_AUTO_ASSIGN: bool = Field(default=False, description="Auto-asignación de tickets")
    TICKET_ESCALATION_TIMEOUT: int = Field(default=1800, description="Timeout de escalación (s)")
    TICKET_AUTO_CLOSE_DAYS: int = Field(default=7, description="Días antes de cerrar resueltos")
    TICKET_CACHE_TTL: int = Field(default=300, description="TTL cache de tickets")
    TICKET_SWEEP_INTERVAL: int = Field(default=300, description="Intervalo de barrido de tickets (s)")

    # ================================
    # FastAPI Configuration
    # ================================
    PORT: int = Field(default=8000, description="Puerto del servidor")
    HOST: str = Field(default="0.0.0.0", description="Host del servidor")

    # ================================
    # Environment Configuration
    # ================================
    ENVIRONMENT: str = Field(default="development", description="Entorno: development/staging/production")
    LOG_LEVEL: str = Field(default="INFO", description="Nivel de logging")
    DEBUG: bool = Field(default=False, description="Modo debug")

    # ================================
    # Testing
    # ================================
    MOCK_EXTERNAL_SERVICES: bool = Field(default=False, description="Mock servicios externos")

    @field_validator('SUPPORTED_LANGUAGES', 'AUTO_HANDOFF_KEYWORDS', mode='before')
    @classmethod
    def split_comma_list(cls, v):
        """Convierte listas separadas por comas a lista."""
        if isinstance(v, str):
            return [item.strip().lower() for item in v.split(",") if item.strip()]
        return v

    @field_validator('ENVIRONMENT')
    @classmethod
    def validate_environment(cls, v):
        """Valida que el environment sea válido."""
        valid_envs = ['development', 'staging', 'production', 'testing']
        if v not in valid_envs:
            raise ValueError(f'Environment debe ser uno de: {valid_envs}')
        return v

    @field_validator('LOG_LEVEL')
    @classmethod
    def validate_log_level(cls, v):
        """Valida nivel de logging."""
        valid_levels = ['DEBUG', 'INFO', 'WARNING', 'ERROR', 'CRITICAL']
        if v.upper() not in valid_levels:
            raise ValueError(f'Log level debe ser uno de: {valid_levels}')
        return v.upper()

    @field_validator('DEFAULT_LANGUAGE')
    @classmethod
    def validate_default_language(cls, v):
        return v.strip().lower()

    # ================================
    # Computed Properties
    # ================================

    @property
    def is_production(self) -> bool:
        """Verifica si está en producción."""
        return self.ENVIRONMENT == "production"

    @property
    def is_development(self) -> bool:
        """Verifica si está en desarrollo."""
        return self.ENVIRONMENT == "development"

    @property
    def redis_config(self) -> Dict[str, Any]:
        """Configuración para conexión Redis."""
        return {
            "url": self.REDIS_URL,
            "max_connections": self.REDIS_MAX_CONNECTIONS,
            "retry_on_timeout": self.REDIS_RETRY_ON_TIMEOUT,
            "socket_connect_timeout": 5,
            "socket_timeout": 5,
            "health_check_interval": 30
        }

    @property
    def openai_config(self) -> Dict[str, Any]:
        """Configuración para OpenAI client."""
        return {
            "api_key": self.OPENAI_API_KEY,
            "base_url": self.OPENAI_BASE_URL,
            "timeout": self.OPENAI_TIMEOUT,
            # Un solo intento por invocación
            "max_retries": 0
        }

    @property
    def whatsapp_config(self) -> Dict[str, Any]:
        """Configuración para WhatsApp Cloud API."""
        return {
            "token": self.WHATSAPP_TOKEN,
            "phone_number_id": self.WHATSAPP_PHONE_NUMBER_ID,
            "api_url": f"{self.WHATSAPP_API_BASE_URL}/{self.WHATSAPP_API_VERSION}",
            "timeout": self.WHATSAPP_TIMEOUT
        }

    def is_language_supported(self, language: Optional[str]) -> bool:
        """Verifica si un idioma está soportado."""
        return language is not None and language in self.SUPPORTED_LANGUAGES


# Instancia global de configuración
_settings: Optional[Settings] = None


def get_settings() -> Settings:
    """
    Obtiene instancia singleton de configuración.

    Returns:
        Settings: Configuración del sistema
    """
    global _settings
    if _settings is None:
        _settings = Settings()
    return _settings


def reload_settings() -> Settings:
    """
    Recarga configuración desde archivos de entorno.

    Returns:
        Settings: Nueva configuración
    """
    global _settings
    _settings = Settings()
    return _settings


# Para testing - permite inyectar configuración mock
def set_settings_for_testing(test_settings: Settings):
    """
    Establece configuración para testing.

    Args:
        test_settings: Configuración de prueba
    """
    global _settings
    _settings = test_settings

"""
Servicios de integración para el agente.

Este módulo contiene los servicios:
- WhatsAppService: WhatsApp Cloud API y parseo del webhook
- LLMService: Comunicación con el modelo alojado
- CacheService / SessionService: Cache y sesiones en Redis
- ConversationService: Usuarios, conversaciones y mensajes
- KnowledgeBaseService: Búsqueda y gestión de FAQ
- TicketService: Ciclo de vida de tickets
- LocalizationService / MessageFormatter: Textos por idioma
"""

"""
Agente de soporte al cliente por WhatsApp

Recibe mensajes de la WhatsApp Cloud API, detecta idioma e intención,
responde con la base de conocimiento o el modelo alojado, gestiona
tickets de soporte y transfiere a agentes humanos cuando se solicita.
"""

__version__ = "1.0.0"
__description__ = "Agente de soporte WhatsApp con intenciones, base de conocimiento y tickets"

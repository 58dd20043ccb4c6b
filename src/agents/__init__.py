"""
Agentes del pipeline de mensajes.

Este módulo contiene:
- IntentClassifierAgent: Idioma, intención, sentimiento y entidades
- IntentHandler: Respuesta por intención y por botón
- TicketMessageHandler: Detección y manejo de solicitudes de ticket
- MessageProcessor: Orquestación de un turno completo
"""

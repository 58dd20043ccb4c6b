"""
Modelos Pydantic para validación de datos.

Este módulo contiene los modelos:
- intents.py: Tipos de intención, sentimiento y análisis
- messages.py: Mensajes entrantes y respuestas del bot
- tickets.py: Vistas de tickets, filtros y estadísticas
- knowledge.py: Entradas y coincidencias de la base de conocimiento
- session.py: Sesión efímera por usuario
"""

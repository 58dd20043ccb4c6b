"""
Persistencia con SQLAlchemy async.

Este módulo contiene:
- models.py: Tablas User, Conversation, Message, Ticket, KnowledgeBaseEntry
- database.py: Engine, sesiones y health check
"""

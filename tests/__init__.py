"""
Test suite del agente WhatsApp de soporte.

Organización de tests:
- test_agents/: Clasificador, manejadores y procesador de mensajes
- test_services/: Servicios de cache, persistencia, KB, tickets y adaptadores
- test_utils/: Formatters y helpers de logging
- test_main.py: Endpoints HTTP del webhook y administración
"""

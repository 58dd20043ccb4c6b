"""
Utilidades y helpers para el sistema.

Este módulo contiene:
- config.py: Gestión de configuración
- logger.py: Configuración de logging
- errors.py: Jerarquía de errores
"""

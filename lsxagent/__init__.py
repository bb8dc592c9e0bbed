"""
LSX Agent: agente de configuración declarativa de nodos.
"""

__version__ = "1.0.0"

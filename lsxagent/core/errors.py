"""
Errores del agente de convergencia.

El core solo define excepciones; las capas (CLI/cliente) deciden si se
registran, se degradan a caché o abortan la ejecución.
"""

from typing import Optional


class AgentError(Exception):
    """Error base del agente."""
    pass


class ValidationError(AgentError):
    """Valor deseado inválido (falla la asignación antes de cualquier transacción)."""
    pass


class ConfigError(AgentError):
    """Error de configuración (archivo faltante, formato inválido)."""
    pass


class DevError(AgentError):
    """Error de programación: un estado que el código nunca debería alcanzar."""
    pass


class ApplyError(AgentError):
    """Falló la escritura de una property; se registra por recurso, no aborta la transacción."""

    def __init__(self, message: str, cause: Optional[BaseException] = None):
        super().__init__(message)
        self.cause = cause


class CatalogError(AgentError):
    """Error estructural del catálogo (referencia colgante, relación inválida)."""
    pass


class DependencyCycleError(CatalogError):
    """El grafo de relaciones contiene un ciclo."""

    def __init__(self, cycle: list):
        self.cycle = cycle
        super().__init__("Ciclo de dependencias detectado: " + " => ".join(cycle))


class ProtocolError(AgentError):
    """Respuesta inválida del compilador, facts vacíos o fallo de decodificación."""
    pass


class FetchTimeoutError(ProtocolError):
    """La descarga remota del catálogo superó su límite de tiempo."""
    pass


class StateCorruptionError(AgentError):
    """El archivo de estado no se pudo leer ni eliminar."""
    pass

"""
Contrato que deben implementar los providers de recursos.

El core solo define la interfaz; la lectura/escritura real (stat, chmod,
gestores de paquetes...) vive en cada provider concreto.
"""

from typing import Any, Protocol, Tuple, runtime_checkable


@runtime_checkable
class ProviderContract(Protocol):
    """
    Contrato mínimo de un provider (posix, apt, systemd, etc.).
    Un provider se instancia por recurso y expone get/set por atributo.
    """

    name: str
    features: Tuple[str, ...]

    def get(self, attribute: str) -> Any:
        """Valor actual del atributo, o ABSENT si el recurso no existe."""
        ...

    def set(self, attribute: str, value: Any) -> None:
        """Escribe el valor deseado. Lanza excepción si falla."""
        ...

    def flush(self) -> None:
        """Confirma cambios acumulados tras sincronizar todas las properties."""
        ...

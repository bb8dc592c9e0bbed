"""
Base opcional para providers: despacho get/set por nombre de atributo.

`get("mode")` llama a `self.mode()`; `set("mode", v)` llama a `self.set_mode(v)`.
Los providers pueden heredar de aquí o implementar solo el contrato (Protocol).
"""

from typing import TYPE_CHECKING, Any, Tuple

from lsxagent.core.errors import DevError

if TYPE_CHECKING:
    from lsxagent.core.resource.resource import Resource


class BaseProvider:
    """Base opcional para providers; no obligatorio usar herencia."""

    name: str = "base"
    features: Tuple[str, ...] = ()

    def __init__(self, resource: "Resource"):
        self.resource = resource

    @classmethod
    def has_features(cls, required: Tuple[str, ...]) -> bool:
        return all(f in cls.features for f in required)

    def get(self, attribute: str) -> Any:
        getter = getattr(self, attribute, None)
        if not callable(getter):
            raise DevError(f"Provider {self.name} no sabe leer '{attribute}'")
        return getter()

    def set(self, attribute: str, value: Any) -> None:
        setter = getattr(self, f"set_{attribute}", None)
        if not callable(setter):
            raise DevError(f"Provider {self.name} no sabe escribir '{attribute}'")
        setter(value)

    def flush(self) -> None:
        """Por defecto: nada que confirmar."""
        pass

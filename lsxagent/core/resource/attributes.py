"""
Atributos de un recurso: parámetros, properties y metaparámetros.

- Parameter: valor de configuración (no converge; ej. path, links).
- Property: atributo convergente con `should` (deseado) e `is` (observado).
- MetaParameter: común a todos los tipos (require, notify, tag, noop...).

Cada tipo declara sus atributos como subclases; el registro (registry.py)
decide el orden de evaluación.
"""

from typing import TYPE_CHECKING, Any, ClassVar, List, Optional, Sequence, Tuple

from lsxagent.core.errors import ApplyError, DevError, ValidationError
from lsxagent.core.resource.reference import ResourceRef
from lsxagent.core.resource.values import ABSENT, TokenValue, format_value, wrap

if TYPE_CHECKING:
    from lsxagent.core.resource.resource import Resource


class _NoDefault:
    def __repr__(self) -> str:
        return "NO_DEFAULT"


NO_DEFAULT = _NoDefault()


class Parameter:
    """Parámetro simple de un tipo."""

    name: ClassVar[str] = ""
    kind: ClassVar[str] = "param"
    doc: ClassVar[str] = ""
    default: ClassVar[Any] = NO_DEFAULT
    isnamevar: ClassVar[bool] = False
    # Si no es vacío, solo se aceptan estos valores (tras munge)
    allowed: ClassVar[Tuple[Any, ...]] = ()
    required_features: ClassVar[Tuple[str, ...]] = ()

    def __init__(self, resource: "Resource"):
        self.resource = resource
        self._value: Any = None

    def validate(self, value: Any) -> None:
        """Hook: lanza ValidationError si el valor crudo no es aceptable."""
        pass

    def munge(self, value: Any) -> Any:
        """Hook: normaliza el valor crudo."""
        return value

    def _accept(self, value: Any) -> Any:
        self.validate(value)
        try:
            munged = self.munge(value)
        except (TypeError, ValueError) as e:
            raise ValidationError(f"{self.path}: valor inválido {value!r}: {e}") from e
        if self.allowed and munged not in self.allowed:
            names = ", ".join(format_value(wrap(a)) for a in self.allowed)
            raise ValidationError(f"{self.path}: valor inválido {value!r}; permitidos: {names}")
        return munged

    @property
    def value(self) -> Any:
        return self._value

    @value.setter
    def value(self, raw: Any) -> None:
        self._value = self._accept(raw)

    @property
    def path(self) -> str:
        return f"{self.resource.ref}/{self.name}"

    def to_data(self) -> Any:
        return export_value(self._value)

    def __repr__(self) -> str:
        return f"<{self.kind} {self.path}>"


class Property(Parameter):
    """
    Atributo convergente.

    Ciclo por ejecución: retrieve() → insync(current) → sync() si no está en sincronía.
    `should` se normaliza (munge) una sola vez al asignarse; `is` solo existe
    después de retrieve() en la ejecución actual.
    """

    kind: ClassVar[str] = "property"
    # Evento devuelto por sync(); por defecto "<tipo>_changed"
    event: ClassVar[Optional[str]] = None
    # Base para formatear enteros (8 para modos)
    value_base: ClassVar[int] = 10
    # Si True, `should` acepta varios valores válidos
    array_matching: ClassVar[bool] = False

    _UNSET = object()

    def __init__(self, resource: "Resource"):
        super().__init__(resource)
        self._should: List[Any] = []
        self._is: Any = self._UNSET

    # --- should ---

    @property
    def should(self) -> Any:
        """Valor deseado (el primero si hay varios aceptables)."""
        if not self._should:
            return None
        if self.array_matching:
            return list(self._should)
        return self._should[0]

    @should.setter
    def should(self, raw: Any) -> None:
        values = raw if isinstance(raw, (list, tuple)) else [raw]
        if not values:
            raise ValidationError(f"{self.path}: se requiere al menos un valor")
        self._should = [self._accept(v) for v in values]

    @property
    def should_values(self) -> List[Any]:
        return list(self._should)

    # `value` de una property es su should
    @property
    def value(self) -> Any:
        return self.should

    @value.setter
    def value(self, raw: Any) -> None:
        self.should = raw

    # --- is ---

    @property
    def is_value(self) -> Any:
        if self._is is self._UNSET:
            raise DevError(f"{self.path}: valor actual leído antes de retrieve()")
        return self._is

    @property
    def retrieved(self) -> bool:
        return self._is is not self._UNSET

    def reset(self) -> None:
        """Olvida el valor observado (nueva ejecución)."""
        self._is = self._UNSET

    # --- ciclo de convergencia ---

    def retrieve(self) -> Any:
        """Consulta el valor actual al provider; nunca modifica `should`."""
        return self.resource.provider.get(self.name)

    def observe(self) -> Any:
        """retrieve() y guarda el resultado como `is`."""
        self._is = self.retrieve()
        return self._is

    def property_matches(self, current: Any, desired: Any) -> bool:
        return current == desired

    def insync(self, current: Any) -> bool:
        if not self._should:
            return True
        if self.array_matching:
            return list(current) == self._should if isinstance(current, (list, tuple)) else False
        return any(self.property_matches(current, s) for s in self._should)

    def sync(self) -> Optional[str]:
        """Escribe el valor deseado vía provider y devuelve el nombre del evento."""
        desired = self.should
        try:
            self.resource.provider.set(self.name, desired)
        except ApplyError:
            raise
        except Exception as e:
            raise ApplyError(f"{self.path}: no se pudo cambiar a {self.should_to_s()}: {e}", cause=e) from e
        return self.event_name()

    def restore(self, previous: Any) -> Optional[str]:
        """Re-aplica un valor observado antes de un cambio (rollback)."""
        if previous == ABSENT and self.name != "ensure":
            return None
        self._should = [previous]
        return self.sync()

    def event_name(self) -> str:
        return self.event or f"{self.resource.type.lower().replace('::', '_')}_changed"

    # --- formateo ---

    def is_to_s(self, current: Any) -> str:
        return format_value(wrap(current, self.value_base))

    def should_to_s(self, desired: Any = None) -> str:
        desired = self.should if desired is None else desired
        if isinstance(desired, list):
            return "[" + ", ".join(format_value(wrap(d, self.value_base)) for d in desired) + "]"
        return format_value(wrap(desired, self.value_base))

    def change_to_s(self, current: Any, desired: Any = None) -> str:
        if current == ABSENT:
            return f"{self.name} definido como '{self.should_to_s(desired)}'"
        return f"{self.name} cambió de '{self.is_to_s(current)}' a '{self.should_to_s(desired)}'"

    def to_data(self) -> Any:
        if len(self._should) == 1 and not self.array_matching:
            return export_value(self._should[0])
        return [export_value(v) for v in self._should]


class EnsureProperty(Property):
    """Property ensure genérica: present/absent."""

    name = "ensure"
    doc = "Si el recurso debe existir."
    allowed = (TokenValue("present"), ABSENT)

    def munge(self, value: Any) -> Any:
        if isinstance(value, TokenValue):
            return value
        if isinstance(value, bool):
            return TokenValue("present" if value else "absent")
        return TokenValue(str(value).strip().lower())


class MetaParameter(Parameter):
    kind: ClassVar[str] = "meta"


class RelationshipMetaParameter(MetaParameter):
    """
    require/before/notify/subscribe. El valor es una lista de ResourceRef.

    direction = "in": el destino depende de este recurso (before/notify)
    direction = "out": este recurso depende de los referidos (require/subscribe)
    """

    refresh: ClassVar[bool] = False
    direction: ClassVar[str] = "out"

    def munge(self, value: Any) -> Any:
        values = value if isinstance(value, (list, tuple)) else [value]
        refs = []
        for v in values:
            try:
                refs.append(ResourceRef.parse(v))
            except ValueError as e:
                raise ValidationError(f"{self.path}: {e}") from e
        return refs

    def to_data(self) -> Any:
        return [str(r) for r in (self._value or [])]


class Require(RelationshipMetaParameter):
    name = "require"
    doc = "Recursos que deben aplicarse antes que este."


class Before(RelationshipMetaParameter):
    name = "before"
    direction = "in"
    doc = "Recursos que deben aplicarse después de este."


class Subscribe(RelationshipMetaParameter):
    name = "subscribe"
    refresh = True
    doc = "Como require, y además refresca este recurso si los referidos cambian."


class Notify(RelationshipMetaParameter):
    name = "notify"
    direction = "in"
    refresh = True
    doc = "Como before, y además refresca los referidos si este recurso cambia."


class Tag(MetaParameter):
    name = "tag"
    doc = "Etiquetas extra para filtrar la aplicación."

    def munge(self, value: Any) -> Any:
        values = value if isinstance(value, (list, tuple)) else [value]
        return [str(v).strip().lower() for v in values if str(v).strip()]


class Noop(MetaParameter):
    name = "noop"
    doc = "Solo informar de los cambios, sin aplicarlos."

    def munge(self, value: Any) -> Any:
        if isinstance(value, str):
            lowered = value.strip().lower()
            if lowered not in ("true", "false"):
                raise ValidationError(f"{self.path}: noop debe ser true/false, no {value!r}")
            return lowered == "true"
        return bool(value)


METAPARAMS: Sequence[type] = (Require, Before, Subscribe, Notify, Tag, Noop)


def export_value(value: Any) -> Any:
    """Convierte variantes internas a datos planos serializables."""
    if isinstance(value, TokenValue):
        return value.name
    if isinstance(value, ResourceRef):
        return str(value)
    if isinstance(value, list):
        return [export_value(v) for v in value]
    return value

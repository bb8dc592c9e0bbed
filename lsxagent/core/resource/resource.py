"""
Recurso gestionado: identidad (type, title) + atributos ordenados.

El recurso no guarda referencia al catálogo que lo contiene; las relaciones
se exponen como ResourceRef y se resuelven pasando el catálogo explícitamente.
"""

import logging
from typing import TYPE_CHECKING, Any, Dict, Iterable, List, Optional, Tuple

from lsxagent.core.errors import DevError, ValidationError
from lsxagent.core.infra.contracts import ProviderContract
from lsxagent.core.resource.attributes import NO_DEFAULT, Parameter, Property, RelationshipMetaParameter
from lsxagent.core.resource.reference import ResourceRef

if TYPE_CHECKING:
    from lsxagent.core.resource.registry import TypeDescriptor


logger = logging.getLogger(__name__)


class Relationship:
    """Arista declarada: source se aplica antes que target."""

    __slots__ = ("source", "target", "refresh", "kind")

    def __init__(self, source: ResourceRef, target: ResourceRef, refresh: bool, kind: str):
        self.source = source
        self.target = target
        self.refresh = refresh
        self.kind = kind

    def __repr__(self) -> str:
        arrow = "~>" if self.refresh else "->"
        return f"{self.source} {arrow} {self.target} ({self.kind})"


class Resource:
    """Instancia de un tipo con sus atributos."""

    def __init__(
        self,
        descriptor: "TypeDescriptor",
        title: str,
        params: Optional[Dict[str, Any]] = None,
        exported: bool = False,
        virtual: bool = False,
        tags: Iterable[str] = (),
    ):
        self.descriptor = descriptor
        self.title = str(title)
        self._attrs: Dict[str, Parameter] = {}
        self._virtual = False
        self._exported = False
        self.virtual = virtual
        self.exported = exported
        self._tags: List[str] = []
        self._provider = None
        self.tag(descriptor.name, *tags)

        params = dict(params or {})
        if descriptor.namevar not in params:
            params[descriptor.namevar] = self.title

        unknown = [n for n in params if not descriptor.validattr(n)]
        if unknown:
            raise ValidationError(f"{self.ref}: atributos desconocidos: {', '.join(sorted(unknown))}")

        provider_name = params.get("provider")
        # Los atributos se asignan en el orden de eachattr, no en el de entrada
        for klass, _ in descriptor.eachattr():
            if klass.name in params:
                self._set(klass.name, params[klass.name], provider_name)
            elif klass.name == "provider" and descriptor.default_provider:
                self._set("provider", descriptor.default_provider, provider_name)
            elif klass.default is not NO_DEFAULT:
                default = klass.default(self) if callable(klass.default) else klass.default
                if default is not None:
                    self._set(klass.name, default, provider_name)

    # --- identidad ---

    @property
    def type(self) -> str:
        return self.descriptor.title

    @property
    def ref(self) -> ResourceRef:
        return ResourceRef(self.type, self.title)

    @property
    def name(self) -> Any:
        return self[self.descriptor.namevar]

    def __str__(self) -> str:
        return str(self.ref)

    def __repr__(self) -> str:
        return f"<Resource {self.ref}>"

    # --- flags ---

    @property
    def virtual(self) -> bool:
        return self._virtual

    @virtual.setter
    def virtual(self, value: bool) -> None:
        # Un recurso exportado sigue siendo virtual aunque virtual se asigne después
        self._virtual = bool(value) or self._exported

    @property
    def exported(self) -> bool:
        return self._exported

    @exported.setter
    def exported(self, value: bool) -> None:
        if value:
            self._exported = True
            self._virtual = True

    # --- tags ---

    def tag(self, *tags: str) -> None:
        for tag in tags:
            for part in str(tag).lower().split("::"):
                if part and part not in self._tags:
                    self._tags.append(part)
            full = str(tag).lower()
            if full and full not in self._tags:
                self._tags.append(full)

    @property
    def tags(self) -> List[str]:
        extra = self._attrs.get("tag")
        return self._tags + [t for t in (extra.value if extra else []) if t not in self._tags]

    def tagged(self, wanted: Iterable[str]) -> bool:
        wanted = [w.lower() for w in wanted]
        if not wanted:
            return True
        return any(t in self.tags for t in wanted)

    # --- atributos ---

    def _set(self, name: str, value: Any, provider_name: Optional[str] = None) -> None:
        klass = self.descriptor.attrclass(name)
        if klass is None:
            raise ValidationError(f"{self.ref}: atributo desconocido '{name}'")
        if klass.kind == "property" and not self.descriptor.supports(klass, provider_name or self._provider_name()):
            logger.info("%s: el provider no soporta %s; no se gestiona el atributo %s", self.ref, ",".join(klass.required_features), name)
            return
        attr = self._attrs.get(name)
        if attr is None:
            attr = klass(self)
            attr.value = value
            self._attrs[name] = attr
            self._reorder()
        else:
            attr.value = value
        if name == "provider":
            self._provider = None

    def _reorder(self) -> None:
        order = [k.name for k, _ in self.descriptor.eachattr()]
        self._attrs = {n: self._attrs[n] for n in order if n in self._attrs}

    def _provider_name(self) -> Optional[str]:
        attr = self._attrs.get("provider")
        return attr.value if attr is not None else self.descriptor.default_provider

    def __setitem__(self, name: str, value: Any) -> None:
        self._set(name, value)

    def __getitem__(self, name: str) -> Any:
        attr = self._attrs.get(name)
        return attr.value if attr is not None else None

    def __contains__(self, name: str) -> bool:
        return name in self._attrs

    def delete(self, name: str) -> None:
        self._attrs.pop(name, None)

    def should(self, name: str) -> Any:
        prop = self.get_property(name)
        return prop.should if prop is not None else None

    def get_property(self, name: str) -> Optional[Property]:
        attr = self._attrs.get(name)
        return attr if isinstance(attr, Property) else None

    def parameter(self, name: str) -> Optional[Parameter]:
        return self._attrs.get(name)

    def properties(self) -> List[Property]:
        """Properties asignadas, en orden declarado por el tipo."""
        return [a for a in self._attrs.values() if isinstance(a, Property)]

    def attributes(self) -> List[Parameter]:
        """Todos los atributos asignados, en orden de evaluación."""
        return list(self._attrs.values())

    @property
    def noop(self) -> bool:
        return bool(self["noop"])

    # --- provider ---

    @property
    def provider(self) -> ProviderContract:
        if self._provider is None:
            klass = self.descriptor.provider_class(self._provider_name())
            if klass is None:
                raise DevError(f"{self.ref}: el tipo {self.descriptor.name} no tiene provider")
            self._provider = klass(self)
        return self._provider

    @property
    def refreshable(self) -> bool:
        if not self.descriptor.providers:
            return False
        return callable(getattr(self.provider, "refresh", None))

    def refresh(self) -> Optional[str]:
        """Reacciona a un cambio aguas arriba (reinicio, recarga...)."""
        if not self.refreshable:
            logger.debug("%s no admite refresh", self.ref)
            return None
        self.provider.refresh()
        return "refreshed"

    def flush(self) -> None:
        if self.descriptor.providers:
            self.provider.flush()

    # --- relaciones ---

    def relationships(self) -> List[Relationship]:
        """Aristas declaradas por require/before/notify/subscribe."""
        out: List[Relationship] = []
        for attr in self._attrs.values():
            if not isinstance(attr, RelationshipMetaParameter):
                continue
            for ref in attr.value or []:
                if attr.direction == "out":
                    out.append(Relationship(ref, self.ref, attr.refresh, attr.name))
                else:
                    out.append(Relationship(self.ref, ref, attr.refresh, attr.name))
        return out

    # --- ciclo de vida ---

    def reset(self) -> None:
        for prop in self.properties():
            prop.reset()

    def clear(self) -> None:
        """Libera el estado de los atributos al terminar la ejecución."""
        self._attrs.clear()
        self._provider = None

    def to_params(self) -> Dict[str, Any]:
        """Atributos como datos planos (para serializar)."""
        out: Dict[str, Any] = {}
        for name, attr in self._attrs.items():
            data = attr.to_data()
            if data is not None:
                out[name] = data
        return out

    def retrieve(self) -> Dict[str, Any]:
        """Valor actual de cada property (sin guardarlo como `is`)."""
        return {p.name: p.retrieve() for p in self.properties()}

    def key(self) -> Tuple[str, str]:
        return self.ref.key

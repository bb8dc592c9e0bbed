"""
Registro explícito de tipos de recurso.

Cada tipo se describe con un TypeDescriptor (atributos, providers, clase de
recurso) y se registra una vez al arrancar mediante TypeRegistry.register().
No hay mutación global: el registro se construye y se pasa a quien lo necesite.
"""

import logging
from typing import Any, Dict, Iterator, List, Optional, Sequence, Tuple, Type

from lsxagent.core.errors import ValidationError
from lsxagent.core.resource.attributes import METAPARAMS, Parameter, Property
from lsxagent.core.resource.reference import canonical_type


logger = logging.getLogger(__name__)


class ProviderParameter(Parameter):
    """Parámetro `provider`: nombre del backend que lee/escribe el recurso."""

    name = "provider"
    doc = "Backend concreto del recurso."

    def munge(self, value: Any) -> Any:
        name = str(getattr(value, "name", value)).strip().lower()
        descriptor = self.resource.descriptor
        if name not in descriptor.providers:
            raise ValidationError(
                f"{self.path}: provider '{name}' desconocido; disponibles: {', '.join(descriptor.providers) or '-'}"
            )
        return name


class TypeDescriptor:
    """
    Descripción de un tipo de recurso.

    Orden de evaluación de atributos (eachattr): namevar, provider,
    properties en orden declarado, resto de parámetros en orden declarado,
    metaparámetros. Ese orden define el orden de los logs y de la evaluación.
    """

    def __init__(
        self,
        name: str,
        parameters: Sequence[Type[Parameter]] = (),
        properties: Sequence[Type[Property]] = (),
        providers: Sequence[type] = (),
        default_provider: Optional[str] = None,
        resource_class: Optional[type] = None,
        doc: str = "",
    ):
        self.name = name.strip().lower()
        self.doc = doc
        self.parameters: List[Type[Parameter]] = list(parameters)
        self.properties: List[Type[Property]] = list(properties)
        self.providers: Dict[str, type] = {p.name: p for p in providers}
        self.default_provider = default_provider or (next(iter(self.providers)) if self.providers else None)
        self.resource_class = resource_class

        namevars = [p for p in self.parameters if p.isnamevar]
        if len(namevars) > 1:
            raise ValueError(f"El tipo {self.name} declara más de un namevar")
        if not namevars:
            # Sin namevar declarado se usa `name`
            namevar = type("NameParameter", (Parameter,), {"name": "name", "isnamevar": True})
            self.parameters.insert(0, namevar)
            namevars = [namevar]
        self.namevar: str = namevars[0].name

        names = [a.name for a in self.parameters + self.properties]
        duplicated = {n for n in names if names.count(n) > 1}
        if duplicated:
            raise ValueError(f"Atributos duplicados en {self.name}: {', '.join(sorted(duplicated))}")

    @property
    def title(self) -> str:
        """Nombre canónico usado en referencias (File, Apache::Vhost)."""
        return canonical_type(self.name)

    def eachattr(self) -> Iterator[Tuple[Type[Parameter], str]]:
        """Recorre (clase, tipo) en el orden de evaluación."""
        namevar = self.attrclass(self.namevar)
        yield namevar, "param"
        if self.providers:
            yield ProviderParameter, "param"
        for prop in self.properties:
            yield prop, "property"
        for param in self.parameters:
            if param is not namevar:
                yield param, "param"
        for meta in METAPARAMS:
            yield meta, "meta"

    def attrclass(self, name: str) -> Optional[Type[Parameter]]:
        if name == "provider" and self.providers:
            return ProviderParameter
        for klass in self.parameters + self.properties + list(METAPARAMS):
            if klass.name == name:
                return klass
        return None

    def attrtype(self, name: str) -> Optional[str]:
        klass = self.attrclass(name)
        return klass.kind if klass is not None else None

    def validattr(self, name: str) -> bool:
        return self.attrclass(name) is not None

    def provider_class(self, name: Optional[str]) -> Optional[type]:
        if name is None:
            name = self.default_provider
        if name is None:
            return None
        return self.providers.get(name)

    def supports(self, attr: Type[Parameter], provider_name: Optional[str]) -> bool:
        """¿El provider elegido tiene las features que exige el atributo?"""
        if not attr.required_features:
            return True
        provider = self.provider_class(provider_name)
        if provider is None:
            return False
        features = getattr(provider, "features", ())
        return all(f in features for f in attr.required_features)

    def create(self, title: str, params: Optional[Dict[str, Any]] = None, **flags: Any):
        """Instancia un recurso de este tipo."""
        from lsxagent.core.resource.resource import Resource

        klass = self.resource_class or Resource
        return klass(self, title, params or {}, **flags)

    def __repr__(self) -> str:
        return f"<TypeDescriptor {self.name}>"


class TypeRegistry:
    """Mapa nombre de tipo → TypeDescriptor."""

    def __init__(self):
        self._types: Dict[str, TypeDescriptor] = {}

    def register(self, descriptor: TypeDescriptor) -> TypeDescriptor:
        if descriptor.name in self._types:
            raise ValueError(f"El tipo '{descriptor.name}' ya está registrado")
        self._types[descriptor.name] = descriptor
        logger.debug("Tipo registrado: %s", descriptor.name)
        return descriptor

    def type(self, name: str) -> Optional[TypeDescriptor]:
        return self._types.get(str(name).strip().lower())

    def names(self) -> List[str]:
        return list(self._types)

    def __contains__(self, name: object) -> bool:
        return str(name).strip().lower() in self._types

    def __iter__(self) -> Iterator[TypeDescriptor]:
        return iter(self._types.values())


def default_registry() -> TypeRegistry:
    """Registro con los tipos incluidos (file, notify)."""
    from lsxagent.core.resource.types import register_builtin_types

    registry = TypeRegistry()
    register_builtin_types(registry)
    return registry

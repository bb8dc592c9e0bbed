"""
Formato serializado del catálogo (respuesta del compilador y caché local).

Documento YAML:

    name: web01.example.com
    version: "1700000000"
    classes: [base, web]
    resources:
      - type: file
        title: /etc/motd
        parameters: {ensure: file, mode: "644", require: ["Class[base]"]}
        exported: false
        virtual: false
        tags: [base]

Los modelos Pydantic validan la forma; to_catalog() construye los recursos
contra un TypeRegistry explícito.
"""

from typing import Any, Dict, List, Optional

import yaml
from pydantic import BaseModel, Field, ValidationError as PydanticValidationError, model_validator

from lsxagent.core.catalog.catalog import Catalog
from lsxagent.core.errors import CatalogError, ProtocolError
from lsxagent.core.resource.registry import TypeRegistry


class CompiledResource(BaseModel):
    type: str = Field(..., description="Nombre del tipo (file, notify, class)")
    title: str
    parameters: Dict[str, Any] = Field(default_factory=dict)
    exported: bool = False
    virtual: bool = False
    tags: List[str] = Field(default_factory=list)

    @model_validator(mode="after")
    def exported_implies_virtual(self) -> "CompiledResource":
        # exported promueve virtual; nunca al revés
        if self.exported and not self.virtual:
            object.__setattr__(self, "virtual", True)
        return self


class CompiledCatalog(BaseModel):
    name: Optional[str] = None
    version: Optional[str] = None
    classes: List[str] = Field(default_factory=list)
    resources: List[CompiledResource] = Field(default_factory=list)

    @model_validator(mode="before")
    @classmethod
    def coerce_version(cls, v: Any) -> Any:
        """El compilador puede mandar la versión como entero."""
        if isinstance(v, dict) and v.get("version") is not None:
            v = {**v, "version": str(v["version"])}
        return v

    def to_catalog(self, registry: TypeRegistry) -> Catalog:
        """
        Construye el Catalog en memoria.

        Raises:
            CatalogError: tipo desconocido o recurso duplicado
            ValidationError: un valor deseado no se puede normalizar
        """
        catalog = Catalog(name=self.name, version=self.version)
        catalog.classes = list(self.classes)
        try:
            for compiled in self.resources:
                descriptor = registry.type(compiled.type)
                if descriptor is None:
                    raise CatalogError(f"Tipo de recurso desconocido: {compiled.type}")
                resource = descriptor.create(
                    compiled.title,
                    compiled.parameters,
                    exported=compiled.exported,
                    virtual=compiled.virtual,
                    tags=compiled.tags,
                )
                catalog.add_resource(resource)
        except Exception:
            catalog.clear()
            raise
        return catalog

    @classmethod
    def from_catalog(cls, catalog: Catalog) -> "CompiledCatalog":
        return cls(
            name=catalog.name,
            version=catalog.version,
            classes=list(catalog.classes),
            resources=[
                CompiledResource(
                    type=r.descriptor.name,
                    title=r.title,
                    parameters=r.to_params(),
                    exported=r.exported,
                    virtual=r.virtual,
                    tags=[t for t in r.tags if t != r.descriptor.name],
                )
                for r in catalog
            ],
        )


def load_document(text: str) -> CompiledCatalog:
    """
    YAML → CompiledCatalog.

    Raises:
        ProtocolError: YAML inválido o documento con forma incorrecta
    """
    try:
        data = yaml.safe_load(text)
    except yaml.YAMLError as e:
        raise ProtocolError(f"El catálogo no se pudo traducir desde YAML: {e}") from e
    if not isinstance(data, dict):
        raise ProtocolError("El catálogo debe ser un mapeo YAML")
    try:
        return CompiledCatalog(**data)
    except PydanticValidationError as e:
        raise ProtocolError(f"Documento de catálogo inválido: {e}") from e


def dump_document(document: CompiledCatalog) -> str:
    return yaml.safe_dump(document.model_dump(), sort_keys=False, default_flow_style=False)


def dump_catalog(catalog: Catalog) -> str:
    return dump_document(CompiledCatalog.from_catalog(catalog))


def load_catalog(text: str, registry: TypeRegistry) -> Catalog:
    return load_document(text).to_catalog(registry)

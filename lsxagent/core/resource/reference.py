"""
Referencias canónicas a recursos: Type[title].

Una referencia es solo una clave de búsqueda; resolverla exige pasar
explícitamente el catálogo contra el que se resuelve.
"""

import re
from typing import TYPE_CHECKING, Any, Optional, Tuple

if TYPE_CHECKING:
    from lsxagent.core.catalog.catalog import Catalog
    from lsxagent.core.resource.resource import Resource


_REF_RE = re.compile(r"^([^\[\]]+)\[(.+)\]$")


def canonical_type(value: Any) -> str:
    """foo::bar → Foo::Bar; None/component → Class."""
    if value is None or str(value).lower() == "component":
        return "Class"
    return "::".join(s.capitalize() for s in str(value).split("::"))


class ResourceRef:
    """Identidad (type, title) de un recurso."""

    __slots__ = ("type", "title")

    def __init__(self, type: Optional[str], title: Any):
        ref_type, ref_title = self.split(title)
        self.title = ref_title
        # Un título con corchetes manda sobre el tipo recibido
        self.type = canonical_type(ref_type if ref_type is not None else type)

    @staticmethod
    def split(value: Any) -> Tuple[Optional[str], str]:
        """'File[/tmp/x]' → ('File', '/tmp/x'); sin corchetes → (None, value)."""
        text = str(value)
        match = _REF_RE.match(text)
        if match:
            return match.group(1), match.group(2)
        return None, text

    @classmethod
    def parse(cls, value: Any) -> "ResourceRef":
        if isinstance(value, ResourceRef):
            return value
        ref_type, _ = cls.split(value)
        if ref_type is None:
            raise ValueError(f"'{value}' no es una referencia Type[title]")
        return cls(None, value)

    def resolve(self, catalog: "Catalog") -> Optional["Resource"]:
        """Busca el recurso en el catálogo dado."""
        return catalog.resource(str(self))

    @property
    def key(self) -> Tuple[str, str]:
        return (self.type, self.title)

    def __str__(self) -> str:
        return "%s[%s]" % (self.type, self.title)

    def __repr__(self) -> str:
        return f"ResourceRef({str(self)!r})"

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, ResourceRef):
            return NotImplemented
        return self.key == other.key

    def __hash__(self) -> int:
        return hash(self.key)

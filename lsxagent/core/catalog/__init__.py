"""
Catalog: grafo de recursos y su formato serializado.
"""

from lsxagent.core.catalog.catalog import Catalog, RelationshipGraph
from lsxagent.core.catalog.codec import CompiledCatalog, CompiledResource, dump_catalog, load_catalog, load_document

__all__ = [
    "Catalog",
    "CompiledCatalog",
    "CompiledResource",
    "RelationshipGraph",
    "dump_catalog",
    "load_catalog",
    "load_document",
]

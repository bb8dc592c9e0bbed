"""
Catálogo: grafo de recursos con aristas de dependencia/notificación.

- add_resource(): inserta recursos (el orden de inserción desempata el orden topológico)
- relationship_graph(): resuelve relaciones; referencias colgantes → CatalogError
- topsort(): orden determinista; ciclo → DependencyCycleError
- apply(): crea y ejecuta una Transaction
- clear(): libera todos los recursos
"""

import heapq
import logging
from typing import Dict, Iterator, List, Optional, Tuple, Union

from lsxagent.core.errors import CatalogError, DependencyCycleError
from lsxagent.core.resource.reference import ResourceRef
from lsxagent.core.resource.resource import Relationship, Resource


logger = logging.getLogger(__name__)


class RelationshipGraph:
    """Grafo ya resuelto: nodos en orden de inserción y aristas por nodo."""

    def __init__(self, nodes: List[Resource], edges: List[Relationship]):
        self.nodes = nodes
        self.edges = edges
        self._index = {r.ref: i for i, r in enumerate(nodes)}
        self._out: Dict[ResourceRef, List[Relationship]] = {r.ref: [] for r in nodes}
        self._in: Dict[ResourceRef, List[Relationship]] = {r.ref: [] for r in nodes}
        for edge in edges:
            self._out[edge.source].append(edge)
            self._in[edge.target].append(edge)

    def outgoing(self, resource: Resource) -> List[Relationship]:
        return self._out[resource.ref]

    def incoming(self, resource: Resource) -> List[Relationship]:
        return self._in[resource.ref]

    def topsort(self) -> List[Resource]:
        """Kahn con cola de prioridad por orden de inserción."""
        indegree = {ref: len(edges) for ref, edges in self._in.items()}
        ready: List[Tuple[int, ResourceRef]] = [
            (self._index[r.ref], r.ref) for r in self.nodes if indegree[r.ref] == 0
        ]
        heapq.heapify(ready)
        order: List[Resource] = []
        while ready:
            index, ref = heapq.heappop(ready)
            order.append(self.nodes[index])
            for edge in self._out[ref]:
                indegree[edge.target] -= 1
                if indegree[edge.target] == 0:
                    heapq.heappush(ready, (self._index[edge.target], edge.target))
        if len(order) != len(self.nodes):
            raise DependencyCycleError(self._find_cycle({ref for ref, n in indegree.items() if n > 0}))
        return order

    def _find_cycle(self, pending: set) -> List[str]:
        """Devuelve un ciclo concreto entre los nodos pendientes (para el mensaje)."""
        # Todo nodo pendiente tiene al menos un predecesor pendiente: se camina hacia atrás
        start = min(pending, key=lambda ref: self._index[ref])
        path: List[ResourceRef] = [start]
        seen = {start: 0}
        current = start
        while True:
            prev = min(
                (e.source for e in self._in[current] if e.source in pending),
                key=lambda ref: self._index[ref],
            )
            if prev in seen:
                cycle = path[seen[prev]:] + [prev]
                cycle.reverse()
                return [str(r) for r in cycle]
            seen[prev] = len(path)
            path.append(prev)
            current = prev


class Catalog:
    """Descripción compilada del estado deseado de un nodo."""

    def __init__(self, name: Optional[str] = None, version: Optional[str] = None):
        self.name = name
        self.version = version
        self.classes: List[str] = []
        self.from_cache = False
        self.host_config = False
        self.retrieval_duration: Optional[float] = None
        self._resources: Dict[ResourceRef, Resource] = {}

    # --- recursos ---

    def add_resource(self, *resources: Resource) -> None:
        for resource in resources:
            ref = resource.ref
            if ref in self._resources:
                raise CatalogError(f"Recurso duplicado: {ref}")
            self._resources[ref] = resource

    def resource(self, ref: Union[str, ResourceRef], title: Optional[str] = None) -> Optional[Resource]:
        """catalog.resource("File[/tmp/x]") o catalog.resource("file", "/tmp/x")."""
        if isinstance(ref, ResourceRef):
            key = ref
        elif title is not None:
            key = ResourceRef(ref, title)
        else:
            try:
                key = ResourceRef.parse(ref)
            except ValueError:
                return None
        return self._resources.get(key)

    def resources(self) -> List[Resource]:
        return list(self._resources.values())

    def __iter__(self) -> Iterator[Resource]:
        return iter(self._resources.values())

    def __len__(self) -> int:
        return len(self._resources)

    def __contains__(self, ref: object) -> bool:
        if isinstance(ref, Resource):
            ref = ref.ref
        if isinstance(ref, str):
            return self.resource(ref) is not None
        return ref in self._resources

    def applicable(self) -> List[Resource]:
        """Recursos que se aplican en este nodo (los virtuales/exportados no)."""
        return [r for r in self._resources.values() if not r.virtual]

    # --- grafo ---

    def relationship_graph(self) -> RelationshipGraph:
        """
        Resuelve todas las relaciones declaradas.

        Raises:
            CatalogError: una relación apunta a un recurso inexistente o no aplicable
        """
        nodes = self.applicable()
        present = {r.ref for r in nodes}
        edges: List[Relationship] = []
        seen = set()
        for resource in nodes:
            for rel in resource.relationships():
                for end in (rel.source, rel.target):
                    if end not in present:
                        where = "virtual" if end in self._resources else "inexistente"
                        raise CatalogError(
                            f"{resource.ref}: la relación '{rel.kind}' apunta a {end}, recurso {where}"
                        )
                if rel.source == rel.target:
                    raise DependencyCycleError([str(rel.source), str(rel.target)])
                key = (rel.source, rel.target, rel.refresh)
                if key in seen:
                    continue
                seen.add(key)
                edges.append(rel)
        logger.debug("Grafo de %s: %d recursos, %d relaciones", self.name or "-", len(nodes), len(edges))
        return RelationshipGraph(nodes, edges)

    def topsort(self) -> List[Resource]:
        return self.relationship_graph().topsort()

    # --- aplicación ---

    def apply(self, tags: Optional[List[str]] = None, noop: bool = False):
        """Aplica el catálogo y devuelve la Transaction ejecutada."""
        from lsxagent.core.transaction.transaction import Transaction

        transaction = Transaction(self, tags=tags, noop=noop)
        transaction.evaluate()
        return transaction

    def clear(self) -> None:
        """Libera el estado de todos los recursos."""
        for resource in self._resources.values():
            resource.clear()
        self._resources.clear()
        self.classes = []

    def __repr__(self) -> str:
        return f"<Catalog {self.name or '-'} ({len(self._resources)} recursos)>"

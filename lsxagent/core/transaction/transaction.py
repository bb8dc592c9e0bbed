"""
Transaction: aplica un catálogo recorriendo su grafo en orden topológico.

Estados: pending → running → completed | failed

- failed solo si la preparación del grafo falla (ciclo, referencia colgante)
  antes de tocar ningún recurso.
- Los errores de una property se registran en el reporte y no abortan:
  el recurso queda `failed`, sus demás properties se siguen aplicando y los
  recursos que dependen de él por require/before quedan `skipped`.
- Un cambio con aristas notify/subscribe programa un refresh del dependiente,
  que se ejecuta justo después de su propia convergencia (una vez como máximo).
"""

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, List, Optional, Set

from lsxagent.core.errors import CatalogError, DevError
from lsxagent.core.resource.attributes import Property
from lsxagent.core.resource.reference import ResourceRef
from lsxagent.core.resource.resource import Resource
from lsxagent.core.transaction.report import Event, EventStatus, ResourceReport, ResourceStatus, RunReport


logger = logging.getLogger(__name__)


class TransactionState(str, Enum):
    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"


@dataclass
class Change:
    """Cambio aplicado con éxito; `previous` es el `is` capturado antes del sync."""
    resource: Resource
    property: Property
    previous: Any
    desired: Any
    event: str


class Transaction:
    """Una pasada ordenada de aplicación de un catálogo."""

    def __init__(self, catalog, tags: Optional[List[str]] = None, noop: bool = False):
        self.catalog = catalog
        self.tags = [t.lower() for t in (tags or [])]
        self.noop = noop
        self.state = TransactionState.PENDING
        self.report = RunReport(host=catalog.name)
        self.changes: List[Change] = []
        self.order: List[Resource] = []
        self._graph = None
        self._failed: Set[ResourceRef] = set()
        self._skipped: Set[ResourceRef] = set()
        self._pending_refresh: Set[ResourceRef] = set()
        self._refreshed: Set[ResourceRef] = set()

    # --- preparación ---

    def prepare(self) -> List[Resource]:
        """Resuelve relaciones y calcula el orden. Falla sin tocar recursos."""
        try:
            self._graph = self.catalog.relationship_graph()
            self.order = self._graph.topsort()
        except CatalogError as e:
            self.state = TransactionState.FAILED
            self.report.error = str(e)
            self.report.finish()
            logger.error("No se pudo preparar el catálogo: %s", e)
            raise
        return self.order

    # --- ejecución ---

    def evaluate(self) -> RunReport:
        if self.state != TransactionState.PENDING:
            raise DevError(f"La transacción ya se ejecutó (estado {self.state.value})")
        self.prepare()
        self.state = TransactionState.RUNNING
        for resource in self.order:
            self._visit(resource)
        self.state = TransactionState.COMPLETED
        self.report.finish()
        metrics = self.report.metrics()
        logger.info(
            "Transacción completada: %d cambiados, %d fallidos, %d omitidos",
            metrics["changed"], metrics["failed"], metrics["skipped"],
        )
        return self.report

    def _blocked_by(self, resource: Resource) -> Optional[ResourceRef]:
        for edge in self._graph.incoming(resource):
            if edge.refresh:
                continue
            if edge.source in self._failed or edge.source in self._skipped:
                return edge.source
        return None

    def _visit(self, resource: Resource) -> None:
        ref = resource.ref
        report = self.report.add(str(ref))

        if not resource.tagged(self.tags):
            report.status = ResourceStatus.FILTERED
            return

        blocker = self._blocked_by(resource)
        if blocker is not None:
            report.status = ResourceStatus.SKIPPED
            report.skipped_because = str(blocker)
            self._skipped.add(ref)
            logger.warning("%s: omitido porque la dependencia %s no se aplicó", ref, blocker)
            return

        noop = self.noop or resource.noop
        resource.reset()
        changed = self._apply_properties(resource, report, noop)

        if report.failures:
            report.status = ResourceStatus.FAILED
            self._failed.add(ref)
        elif changed:
            report.status = ResourceStatus.CHANGED

        if ref in self._pending_refresh and ref not in self._refreshed and not report.failures:
            self._refresh(resource, report, noop)

        if changed:
            for edge in self._graph.outgoing(resource):
                if edge.refresh:
                    self._pending_refresh.add(edge.target)

    def _apply_properties(self, resource: Resource, report: ResourceReport, noop: bool) -> bool:
        """retrieve → insync → sync por property. Devuelve True si hubo cambios reales."""
        changed = False
        for prop in resource.properties():
            try:
                current = prop.observe()
                if prop.insync(current):
                    continue
                desired = prop.should
                message = prop.change_to_s(current, desired)
                if noop:
                    report.events.append(Event(
                        resource=str(resource.ref), status=EventStatus.NOOP, property=prop.name,
                        message=f"{message} (noop)",
                        previous=prop.is_to_s(current), desired=prop.should_to_s(desired),
                    ))
                    logger.info("%s: %s (noop)", prop.path, message)
                    continue
                name = prop.sync()
                if name is None:
                    continue
                logger.info("%s: %s", prop.path, message)
                report.events.append(Event(
                    resource=str(resource.ref), status=EventStatus.SUCCESS, property=prop.name,
                    name=name, message=message,
                    previous=prop.is_to_s(current), desired=prop.should_to_s(desired),
                ))
                self.changes.append(Change(resource, prop, current, desired, name))
                changed = True
            except Exception as e:
                logger.error("%s: no se pudo aplicar: %s", prop.path, e)
                report.events.append(Event(
                    resource=str(resource.ref), status=EventStatus.FAILURE,
                    property=prop.name, message=str(e),
                ))
        if changed:
            try:
                resource.flush()
            except Exception as e:
                logger.error("%s: no se pudieron confirmar los cambios: %s", resource.ref, e)
                report.events.append(Event(resource=str(resource.ref), status=EventStatus.FAILURE, message=str(e)))
        return changed

    def _refresh(self, resource: Resource, report: ResourceReport, noop: bool) -> None:
        self._refreshed.add(resource.ref)
        if noop:
            report.events.append(Event(
                resource=str(resource.ref), status=EventStatus.NOOP,
                message="se habría refrescado (noop)",
            ))
            return
        try:
            name = resource.refresh()
        except Exception as e:
            logger.error("%s: falló el refresh: %s", resource.ref, e)
            report.events.append(Event(resource=str(resource.ref), status=EventStatus.FAILURE, message=f"refresh: {e}"))
            report.status = ResourceStatus.FAILED
            self._failed.add(resource.ref)
            return
        if name is None:
            return
        logger.info("%s: refrescado por cambios aguas arriba", resource.ref)
        report.events.append(Event(
            resource=str(resource.ref), status=EventStatus.REFRESH, name=name,
            message="refrescado por cambios aguas arriba",
        ))

    # --- consultas ---

    def changed(self) -> List[Resource]:
        """Recursos con al menos un cambio, en orden de finalización."""
        out: List[Resource] = []
        for change in self.changes:
            if change.resource not in out:
                out.append(change.resource)
        return out

    def failed(self) -> List[str]:
        return [str(r) for r in self._failed]

    def skipped(self) -> List[str]:
        return [str(r) for r in self._skipped]

    # --- rollback ---

    def rollback(self) -> List[Event]:
        """
        Deshace los cambios aplicados: re-aplica el `is` capturado como `should`,
        en orden inverso de finalización.
        """
        if self.state != TransactionState.COMPLETED:
            raise DevError("Solo se puede hacer rollback de una transacción completada")
        events: List[Event] = []
        touched: List[Resource] = []
        for change in reversed(self.changes):
            prop = change.property
            try:
                name = prop.restore(change.previous)
            except Exception as e:
                logger.error("%s: falló el rollback: %s", prop.path, e)
                events.append(Event(resource=str(change.resource.ref), status=EventStatus.FAILURE,
                                    property=prop.name, message=f"rollback: {e}"))
                continue
            if change.resource not in touched:
                touched.append(change.resource)
            if name is None:
                continue
            message = f"{prop.name} restaurado a '{prop.is_to_s(change.previous)}'"
            logger.info("%s: %s", prop.path, message)
            events.append(Event(
                resource=str(change.resource.ref), status=EventStatus.ROLLBACK, property=prop.name,
                name=name, message=message,
                previous=prop.should_to_s(change.desired), desired=prop.is_to_s(change.previous),
            ))
        for resource in touched:
            try:
                resource.flush()
            except Exception as e:
                logger.error("%s: no se pudieron confirmar los cambios del rollback: %s", resource.ref, e)
        self.report.rollback.extend(events)
        self.changes = []
        return events

"""
Tipo contenedor `class`: agrupa recursos de una clase compilada.

No tiene properties; existe para que las relaciones contra Class[nombre]
se resuelvan dentro del grafo.
"""

from lsxagent.core.resource.registry import TypeDescriptor


DESCRIPTOR = TypeDescriptor("class", doc="Contenedor de clases compiladas.")

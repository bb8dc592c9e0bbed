"""
Tipos de recurso incluidos con el agente.

Se registran explícitamente al arrancar; los plugins pueden registrar más
tipos sobre el mismo TypeRegistry.
"""

from lsxagent.core.resource.types import container, file, notify

BUILTIN_DESCRIPTORS = [container.DESCRIPTOR, file.DESCRIPTOR, notify.DESCRIPTOR]


def register_builtin_types(registry) -> None:
    for descriptor in BUILTIN_DESCRIPTORS:
        registry.register(descriptor)


__all__ = ["BUILTIN_DESCRIPTORS", "register_builtin_types"]

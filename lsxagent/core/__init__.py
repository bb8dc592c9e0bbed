"""
Core: modelo de recursos, catálogo, transacción y cliente.

- resource, catalog y transaction no conocen la red ni la CLI.
- client compone todo lo anterior con runtime (estado, lock) y el compilador.
- La CLI importa desde core; nunca al revés.
"""

from lsxagent.core.errors import AgentError, CatalogError, ConfigError, ProtocolError, ValidationError

__all__ = ["AgentError", "CatalogError", "ConfigError", "ProtocolError", "ValidationError"]

"""
Runtime: rutas de estado, estado persistente entre ejecuciones y lock de ejecución.

El estado real NUNCA vive dentro del repo; se escribe en /var/lib/lsx/agent/.
"""

from lsxagent.core.runtime.lock import Pidlock
from lsxagent.core.runtime.resolver import default_node_name, state_root
from lsxagent.core.runtime.state import LoadOutcome, Storage

__all__ = ["LoadOutcome", "Pidlock", "Storage", "default_node_name", "state_root"]

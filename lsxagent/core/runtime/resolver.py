"""
Resolución de rutas de estado del agente.

- state_root(): directorio canónico de estado/runtime (/var/lib/lsx/agent/).
- default_node_name(): nombre del nodo cuando la configuración no lo fija.

El core no crea directorios al resolver; quién escribe (storage, lock, caché)
se encarga de crear el padre justo antes de escribir.
"""

import os
import socket
from pathlib import Path


# Ruta canónica del estado del agente (fuera de cualquier repo)
AGENT_STATE_ROOT = Path("/var/lib/lsx/agent")


def state_root() -> Path:
    """
    Directorio raíz del estado del agente.
    LSXAGENT_STATE_ROOT permite moverlo (tests, ejecución sin root).
    """
    explicit = os.environ.get("LSXAGENT_STATE_ROOT", "").strip()
    if explicit:
        return Path(explicit).expanduser().resolve()
    return AGENT_STATE_ROOT


def default_node_name() -> str:
    """Nombre del nodo: FQDN si se puede resolver, si no el hostname."""
    name = socket.getfqdn() or socket.gethostname()
    return name.strip().lower()


def ensure_parent(path: Path) -> None:
    """Crea el directorio padre de un archivo si no existe."""
    path.parent.mkdir(parents=True, exist_ok=True)

"""
Estado persistente entre ejecuciones (statefile).

Guarda por espacio de nombres datos como:
    configuration: {compile_time, facts, splay_time}

Se carga una vez al arrancar y se escribe al terminar. Un archivo corrupto
se elimina y se trata como vacío; solo si no se puede eliminar es fatal.
"""

import logging
import os
import tempfile
from enum import Enum
from pathlib import Path
from typing import Any, Dict

import yaml

from lsxagent.core.errors import StateCorruptionError
from lsxagent.core.runtime.resolver import ensure_parent


logger = logging.getLogger(__name__)


class LoadOutcome(str, Enum):
    LOADED = "loaded"  # archivo leído
    MISSING = "missing"  # no había archivo
    RECOVERED = "recovered"  # estaba corrupto; se eliminó y se empieza vacío


class Storage:
    """Almacén YAML del estado del agente."""

    def __init__(self, path: Path):
        self.path = Path(path)
        self._data: Dict[str, Dict[str, Any]] = {}
        self.loaded = False

    def cache(self, namespace: str) -> Dict[str, Any]:
        """Diccionario mutable del espacio de nombres (se crea si no existe)."""
        return self._data.setdefault(namespace, {})

    def clear(self) -> None:
        self._data = {}
        self.loaded = False

    def _read(self) -> Dict[str, Dict[str, Any]]:
        with open(self.path, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}
        if not isinstance(data, dict) or not all(isinstance(v, dict) for v in data.values()):
            raise ValueError("el contenido no es un mapeo de espacios de nombres")
        return data

    def load(self) -> LoadOutcome:
        """
        Lee el archivo de estado.

        Returns:
            LoadOutcome: LOADED, MISSING o RECOVERED (corrupto y eliminado)

        Raises:
            StateCorruptionError: estaba corrupto y no se pudo eliminar
        """
        self.loaded = True
        if not self.path.exists():
            self._data = {}
            return LoadOutcome.MISSING
        try:
            self._data = self._read()
            return LoadOutcome.LOADED
        except (OSError, ValueError, yaml.YAMLError) as detail:
            logger.error("Archivo de estado corrupto %s: %s", self.path, detail)
        try:
            self.path.unlink()
        except OSError as detail:
            raise StateCorruptionError(f"No se puede eliminar {self.path}: {detail}") from detail
        self._data = {}
        return LoadOutcome.RECOVERED

    def store(self) -> None:
        """Escribe el estado con archivo temporal + rename atómico."""
        ensure_parent(self.path)
        fd, tmp = tempfile.mkstemp(prefix=self.path.name + ".", suffix=".tmp", dir=str(self.path.parent))
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                yaml.safe_dump(self._data, f, default_flow_style=False)
            os.replace(tmp, self.path)
        except BaseException:
            if os.path.exists(tmp):
                os.unlink(tmp)
            raise

"""
Sincronización de plugins y facts externos.

Copia el árbol de origen al destino local (rglob + copy2), ignorando los
patrones configurados y purgando lo que ya no existe en origen. Los
módulos ya importados que cambiaron se recargan.
"""

import filecmp
import fnmatch
import importlib
import logging
import shutil
import sys
import time
from pathlib import Path
from typing import List, Optional

from lsxagent.core.errors import FetchTimeoutError


logger = logging.getLogger(__name__)


class Downloader:
    """Descarga acotada en tiempo de un árbol de archivos."""

    def __init__(self, name: str, source: Path, dest: Path, ignore: str = "", timeout: float = 120):
        self.name = name
        self.source = Path(source)
        self.dest = Path(dest)
        self.ignore = ignore.split()
        self.timeout = timeout

    def _ignored(self, rel: Path) -> bool:
        return any(fnmatch.fnmatch(part, pattern) for part in rel.parts for pattern in self.ignore)

    def evaluate(self) -> List[Path]:
        """
        Sincroniza source → dest.

        Returns:
            Archivos de destino creados o modificados

        Raises:
            FetchTimeoutError: se superó el tiempo máximo
        """
        if not self.source.is_dir():
            logger.warning("Origen de %s no existe: %s", self.name, self.source)
            return []

        deadline = time.monotonic() + self.timeout
        changed: List[Path] = []
        wanted = set()
        self.dest.mkdir(parents=True, exist_ok=True)

        for f in sorted(self.source.rglob("*")):
            if time.monotonic() > deadline:
                raise FetchTimeoutError(f"Timeout descargando {self.name}")
            rel = f.relative_to(self.source)
            if self._ignored(rel) or not f.is_file():
                continue
            wanted.add(rel)
            d = self.dest / rel
            if d.is_file() and filecmp.cmp(f, d, shallow=False):
                continue
            d.parent.mkdir(parents=True, exist_ok=True)
            shutil.copy2(f, d)
            changed.append(d)

        for f in sorted(self.dest.rglob("*"), reverse=True):
            rel = f.relative_to(self.dest)
            if f.is_file() and rel not in wanted and not self._ignored(rel):
                logger.info("Eliminando %s obsoleto: %s", self.name, f)
                f.unlink()

        return changed


def _module_name(dest: Path, path: Path) -> Optional[str]:
    if path.suffix != ".py":
        return None
    parts = list(path.relative_to(dest).with_suffix("").parts)
    if parts[-1] == "__init__":
        parts.pop()
    return ".".join(parts) or None


def reload_changed(dest: Path, files: List[Path]) -> List[str]:
    """
    Recarga los módulos ya importados cuyos archivos cambiaron.

    Los que no estaban cargados se importarán normalmente al usarse.
    """
    if str(dest) not in sys.path:
        sys.path.insert(0, str(dest))
    reloaded = []
    for path in files:
        name = _module_name(dest, path)
        module = sys.modules.get(name) if name else None
        if module is None:
            continue
        logger.info("Recargando archivo descargado %s", path)
        try:
            importlib.reload(module)
            reloaded.append(name)
        except Exception as e:
            logger.warning("No se pudo recargar %s: %s", path, e)
    return reloaded


def download(name: str, source: Optional[Path], dest: Path, ignore: str, timeout: float) -> List[Path]:
    """Descarga sin propagar errores: un fallo solo se registra."""
    if source is None:
        logger.warning("%s activado sin origen configurado", name)
        return []
    logger.debug("Obteniendo %s", name)
    try:
        return Downloader(name, source, dest, ignore, timeout).evaluate()
    except (OSError, FetchTimeoutError) as e:
        logger.error("No se pudieron obtener %s: %s", name, e)
        return []

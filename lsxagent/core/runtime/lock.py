"""
Lock de ejecución basado en archivo (pidlock).

- lock(): publica el archivo con os.link (atómico y exclusivo); no espera nunca.
- El contenido es el PID dueño, o vacío si es un lock anónimo (disable).
- Un lock cuyo PID ya no existe se considera obsoleto y se limpia.
"""

import logging
import os
import tempfile
from pathlib import Path
from typing import Optional

from lsxagent.core.runtime.resolver import ensure_parent


logger = logging.getLogger(__name__)


class Pidlock:
    """Exclusión mutua entre procesos del mismo nodo."""

    def __init__(self, path: Path):
        self.path = Path(path)

    def lock_owner(self) -> Optional[int]:
        """PID dueño, None si el lock es anónimo o no existe."""
        try:
            text = self.path.read_text(encoding="utf-8").strip()
        except FileNotFoundError:
            return None
        return int(text) if text.isdigit() else None

    def anonymous(self) -> bool:
        return self.path.exists() and self.lock_owner() is None

    def _stale(self) -> bool:
        owner = self.lock_owner()
        if owner is None:
            return False
        try:
            os.kill(owner, 0)
        except ProcessLookupError:
            return True
        except PermissionError:
            # El proceso existe pero es de otro usuario
            return False
        return False

    def locked(self) -> bool:
        if not self.path.exists():
            return False
        if self._stale():
            logger.warning("Lock obsoleto %s (PID %s); se elimina", self.path, self.lock_owner())
            self._remove()
            return False
        return True

    def mine(self) -> bool:
        return self.lock_owner() == os.getpid()

    def lock(self, anonymous: bool = False) -> bool:
        """
        Intenta tomar el lock sin esperar.

        Returns:
            True si se tomó (o ya era de este proceso), False si lo tiene otro
        """
        if self.locked():
            return self.anonymous() if anonymous else self.mine()
        ensure_parent(self.path)
        # El contenido se escribe antes de publicar el lock: nunca se ve vacío a medias
        fd, tmp = tempfile.mkstemp(prefix=self.path.name + ".", suffix=".tmp", dir=str(self.path.parent))
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                if not anonymous:
                    f.write(str(os.getpid()))
            os.chmod(tmp, 0o644)
            os.link(tmp, str(self.path))
        except FileExistsError:
            return False
        finally:
            os.unlink(tmp)
        return True

    def unlock(self, anonymous: bool = False) -> bool:
        """
        Libera el lock si es nuestro (o si es anónimo y se pide anonymous).

        Returns:
            True si se eliminó el archivo
        """
        if not self.path.exists():
            return False
        if (anonymous and self.anonymous()) or (not anonymous and self.mine()):
            self._remove()
            return True
        return False

    def _remove(self) -> None:
        try:
            self.path.unlink()
        except FileNotFoundError:
            pass

"""
Facts del nodo.

La recolección real es un colaborador externo (FactSource). Aquí se define
el contrato, una fuente mínima del sistema y el post-proceso que aplica el
cliente: valores como texto, clientversion y environment siempre presentes.
"""

import importlib.util
import logging
import os
import platform
import socket
from pathlib import Path
from typing import Any, Callable, Dict, Iterable, List, Optional, Protocol

from lsxagent import __version__


logger = logging.getLogger(__name__)


class FactSource(Protocol):
    """Quien sabe recolectar facts del nodo."""

    def collect(self) -> Dict[str, Any]:
        ...

    def reload(self) -> None:
        """Vuelve a cargar extensiones de facts (tras descargarlas)."""
        ...


class StaticFactSource:
    """Facts fijos (modo local, pruebas)."""

    def __init__(self, facts: Optional[Dict[str, Any]] = None):
        self.facts = dict(facts or {})

    def collect(self) -> Dict[str, Any]:
        return dict(self.facts)

    def reload(self) -> None:
        pass


def _meminfo() -> Dict[str, str]:
    """memorysize/memoryfree/swapsize/swapfree desde /proc/meminfo (Linux)."""
    keys = {"MemTotal": "memorysize", "MemFree": "memoryfree", "SwapTotal": "swapsize", "SwapFree": "swapfree"}
    out: Dict[str, str] = {}
    try:
        with open("/proc/meminfo", "r") as f:
            for line in f:
                name, _, rest = line.partition(":")
                if name in keys:
                    kb = int(rest.split()[0])
                    out[keys[name]] = "%.2f MB" % (kb / 1024.0)
    except (OSError, ValueError, IndexError):
        pass
    return out


class SystemFactSource:
    """
    Facts básicos del sistema + extensiones en directorios de facts.

    Una extensión es un .py con una función `facts()` que devuelve un dict.
    """

    def __init__(self, fact_dirs: Iterable[Path] = ()):
        self.fact_dirs = [Path(d) for d in fact_dirs]
        self._extensions: List[Callable[[], Dict[str, Any]]] = []
        self.reload()

    def reload(self) -> None:
        self._extensions = []
        for directory in self.fact_dirs:
            if not directory.is_dir():
                continue
            for path in sorted(directory.glob("*.py")):
                func = self._load_extension(path)
                if func is not None:
                    self._extensions.append(func)

    @staticmethod
    def _load_extension(path: Path) -> Optional[Callable[[], Dict[str, Any]]]:
        logger.info("Cargando fact %s", path.stem)
        try:
            spec = importlib.util.spec_from_file_location(f"lsxagent_fact_{path.stem}", path)
            module = importlib.util.module_from_spec(spec)
            spec.loader.exec_module(module)
        except Exception as e:
            logger.warning("No se pudo cargar el fact %s: %s", path, e)
            return None
        func = getattr(module, "facts", None)
        if not callable(func):
            logger.warning("El fact %s no define facts()", path)
            return None
        return func

    def collect(self) -> Dict[str, Any]:
        fqdn = socket.getfqdn()
        hostname = socket.gethostname().split(".")[0]
        domain = fqdn.split(".", 1)[1] if "." in fqdn else ""
        facts: Dict[str, Any] = {
            "hostname": hostname,
            "fqdn": fqdn,
            "domain": domain,
            "kernel": platform.system(),
            "kernelrelease": platform.release(),
            "architecture": platform.machine(),
            "processorcount": str(os.cpu_count() or 1),
            "pythonversion": platform.python_version(),
        }
        facts.update(_meminfo())
        for func in self._extensions:
            try:
                facts.update(func() or {})
            except Exception as e:
                logger.warning("Un fact externo falló: %s", e)
        return facts


def collect_facts(source: FactSource, environment: str, downcase: bool = False) -> Dict[str, str]:
    """
    Recolecta y normaliza facts.

    Args:
        source: Fuente de facts
        environment: Entorno configurado (se añade si el fact no existe)
        downcase: Pasar los valores a minúsculas

    Returns:
        Dict nombre → texto con clientversion y environment; vacío si la
        fuente no devolvió nada
    """
    raw = source.collect()
    if not raw:
        return {}
    facts: Dict[str, str] = {}
    for name, value in raw.items():
        text = str(value)
        facts[str(name)] = text.lower() if downcase else text

    facts["clientversion"] = __version__
    if "environment" not in facts:
        facts["environment"] = environment
    return facts


def parse_dynamic_facts(value: str) -> List[str]:
    """'MemorySize, swapfree' → ['memorysize', 'swapfree']"""
    return [f.strip().lower() for f in value.split(",") if f.strip()]

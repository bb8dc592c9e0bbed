"""
Drivers del compilador de catálogos.

Transporte: facts en YAML percent-encoded hacia el compilador; el
compilador responde con el documento YAML del catálogo, también
percent-encoded.
"""

import logging
import time
from pathlib import Path
from typing import Any, Callable, Dict, Optional, Protocol, Union
from urllib.parse import quote, unquote

import requests
import yaml

from lsxagent.core.catalog.codec import CompiledCatalog, dump_document
from lsxagent.core.errors import FetchTimeoutError, ProtocolError


logger = logging.getLogger(__name__)


class CompilerDriver(Protocol):
    """Contrato con el compilador (remoto o en proceso)."""

    def getconfig(self, facts: str, format: str = "yaml") -> str:
        """Devuelve el catálogo serializado y percent-encoded."""
        ...

    def freshness(self) -> float:
        """Momento (epoch) de la última compilación válida en el compilador."""
        ...


def encode_facts(facts: Dict[str, str]) -> str:
    return quote(yaml.safe_dump(facts, default_flow_style=False))


def decode_facts(text: str) -> Dict[str, str]:
    try:
        data = yaml.safe_load(unquote(text))
    except yaml.YAMLError as e:
        raise ProtocolError(f"No se pudieron decodificar los facts: {e}") from e
    if not isinstance(data, dict):
        raise ProtocolError("Los facts deben ser un mapeo")
    return data


def decode_payload(text: str) -> str:
    """Respuesta percent-encoded → YAML."""
    if not text:
        raise ProtocolError("El compilador devolvió un catálogo vacío")
    return unquote(text)


class HTTPCompilerDriver:
    """Compilador remoto vía HTTP."""

    def __init__(self, server: str, node: str, timeout: float = 120, session: Optional[requests.Session] = None):
        """
        Args:
            server: URL base del compilador (ej: https://compiler:8140)
            node: Nombre del nodo
            timeout: Segundos por petición
            session: Sesión requests a reutilizar
        """
        self.server = server.rstrip("/")
        self.node = node
        self.timeout = timeout
        self.session = session or requests.Session()

    def _get(self, endpoint: str, params: Optional[Dict[str, str]] = None) -> str:
        url = f"{self.server}/catalog/{quote(self.node, safe='')}{endpoint}"
        logger.debug("GET %s", url)
        try:
            response = self.session.get(url, params=params, timeout=self.timeout)
        except requests.exceptions.Timeout as e:
            raise FetchTimeoutError(f"Timeout al conectar con {self.server}") from e
        except requests.exceptions.RequestException as e:
            raise ProtocolError(f"Error de conexión con {self.server}: {e}") from e

        if response.status_code != 200:
            raise ProtocolError(f"Error {response.status_code}: {response.text[:200]}")
        return response.text

    def getconfig(self, facts: str, format: str = "yaml") -> str:
        # facts ya viene percent-encoded; requests lo codificaría otra vez
        url_params = {"facts": unquote(facts), "format": format}
        return self._get("", url_params)

    def freshness(self) -> float:
        text = self._get("/freshness").strip()
        try:
            return float(text)
        except ValueError as e:
            raise ProtocolError(f"Respuesta de freshness inválida: {text!r}") from e


CompileFunc = Callable[[str, Dict[str, str]], Union[str, CompiledCatalog, Dict[str, Any]]]


class LocalCompilerDriver:
    """
    Compilador en proceso.

    `compile(node, facts)` devuelve el documento como texto YAML, dict o
    CompiledCatalog. freshness() siempre está en el futuro: el modo local
    recompila en cada ejecución.
    """

    def __init__(self, node: str, compile: CompileFunc):
        self.node = node
        self._compile = compile

    def getconfig(self, facts: str, format: str = "yaml") -> str:
        if format != "yaml":
            raise ProtocolError(f"Formato no soportado: {format}")
        result = self._compile(self.node, decode_facts(facts))
        if isinstance(result, CompiledCatalog):
            text = dump_document(result)
        elif isinstance(result, dict):
            text = yaml.safe_dump(result, sort_keys=False, default_flow_style=False)
        else:
            text = str(result)
        return quote(text)

    def freshness(self) -> float:
        return time.time() + 1000


class FileCompiler:
    """Callable de compilación que devuelve un documento YAML ya compilado en disco."""

    def __init__(self, path: Path):
        self.path = Path(path)

    def __call__(self, node: str, facts: Dict[str, str]) -> str:
        try:
            return self.path.read_text(encoding="utf-8")
        except OSError as e:
            raise ProtocolError(f"No se pudo leer el catálogo {self.path}: {e}") from e

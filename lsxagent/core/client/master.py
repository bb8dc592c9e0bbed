"""
CatalogClient: obtiene el catálogo del nodo y lo aplica.

Flujo de run():
    splay → lock (sin esperar) → getconfig → aplicar → unlock → limpiar
    → restart diferido (si se pidió durante la ejecución)

getconfig() decide de dónde sale el catálogo:
    - en memoria / caché en disco si sigue fresco
    - compilador remoto (con timeout)
    - caché en disco si el remoto falla y usecacheonfailure está activo
"""

import logging
import os
import random
import signal
import tempfile
import threading
import time
from concurrent.futures import ThreadPoolExecutor, TimeoutError as FuturesTimeoutError
from pathlib import Path
from typing import Callable, Dict, List, Optional

from lsxagent.core.catalog.catalog import Catalog
from lsxagent.core.catalog.codec import load_catalog, load_document
from lsxagent.core.client.driver import CompilerDriver, HTTPCompilerDriver, decode_payload, encode_facts
from lsxagent.core.client.facts import FactSource, SystemFactSource, collect_facts, parse_dynamic_facts
from lsxagent.core.client.plugins import download, reload_changed
from lsxagent.core.errors import AgentError, CatalogError, ConfigError, FetchTimeoutError, ProtocolError, StateCorruptionError
from lsxagent.core.resource.registry import TypeRegistry, default_registry
from lsxagent.core.runtime.lock import Pidlock
from lsxagent.core.runtime.resolver import ensure_parent
from lsxagent.core.runtime.state import LoadOutcome, Storage
from lsxagent.core.settings import AgentSettings
from lsxagent.core.transaction.report import RunReport
from lsxagent.core.transaction.transaction import Transaction


logger = logging.getLogger(__name__)


def _send_sighup() -> None:
    os.kill(os.getpid(), signal.SIGHUP)


class CatalogClient:
    """Cliente de catálogo de un nodo. Se construye una vez en el punto de entrada."""

    # Una sola descarga de catálogo en vuelo por proceso
    _fetch_lock = threading.Lock()

    def __init__(
        self,
        settings: AgentSettings,
        driver: Optional[CompilerDriver] = None,
        registry: Optional[TypeRegistry] = None,
        fact_source: Optional[FactSource] = None,
        local: Optional[bool] = None,
        restart_hook: Optional[Callable[[], None]] = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        """
        Args:
            settings: Configuración explícita del agente
            driver: Compilador; por defecto HTTP contra settings.server
            registry: Tipos de recurso disponibles
            fact_source: Origen de facts; por defecto el del sistema
            local: Compilación en proceso (sin classfile); por defecto settings.local
            restart_hook: Acción de reinicio diferido (por defecto SIGHUP propio)
            sleep: Función de espera (splay)
        """
        self.settings = settings
        self.local = settings.local if local is None else local
        if driver is None:
            if not settings.server:
                raise ConfigError("Sin servidor configurado: indica un compilador local")
            driver = HTTPCompilerDriver(settings.server, settings.node_name, timeout=self.timeout())
        self.driver = driver
        self.registry = registry or default_registry()
        self.fact_source = fact_source or SystemFactSource([settings.factdest])
        self.restart_hook = restart_hook or _send_sighup
        self.sleep = sleep

        self.storage = Storage(settings.statefile)
        self.lockfile = Pidlock(settings.lockfile)
        self.catalog: Optional[Catalog] = None
        self.compile_time: Optional[float] = None
        self.last_report: Optional[RunReport] = None
        self._restart_requested = False
        self._fetched_at: Optional[float] = None

    # --- configuración derivada ---

    @property
    def cachefile(self) -> Path:
        return Path(f"{self.settings.localconfig}.yaml")

    def timeout(self) -> int:
        """
        Tiempo máximo de descarga del catálogo.

        Raises:
            ConfigError: el valor no es un entero
        """
        value = self.settings.configtimeout
        if isinstance(value, bool):
            raise ConfigError(f"configtimeout inválido: {value!r}")
        if isinstance(value, int):
            return value
        text = str(value).strip()
        if text.isdigit():
            return int(text)
        raise ConfigError(f"configtimeout debe ser un entero: {value!r}")

    def dynamic_facts(self) -> List[str]:
        return parse_dynamic_facts(self.settings.dynamicfacts)

    # --- estado persistente ---

    def dostorage(self) -> None:
        """Carga el estado una vez por proceso. Un estado corrupto se descarta."""
        if self.storage.loaded:
            return
        outcome = self.storage.load()
        if outcome == LoadOutcome.RECOVERED:
            logger.warning("Estado corrupto descartado: %s; se empieza vacío", self.storage.path)
        if self.compile_time is None:
            self.compile_time = self.storage.cache("configuration").get("compile_time")

    # --- facts ---

    def facts(self) -> Dict[str, str]:
        if self.settings.factsync:
            self.getfacts()
        return collect_facts(self.fact_source, self.settings.environment, self.settings.downcasefacts)

    def facts_changed(self, facts: Dict[str, str]) -> bool:
        """¿Cambió algún fact no dinámico respecto a la última compilación?"""
        old = self.storage.cache("configuration").get("facts")
        if not old:
            return True
        dynamic = set(self.dynamic_facts())
        current = {k: v for k, v in facts.items() if k not in dynamic}
        previous = {k: v for k, v in old.items() if k not in dynamic}
        return current != previous

    def fresh(self, facts: Dict[str, str]) -> bool:
        """¿Sigue siendo válido el catálogo de la última compilación?"""
        if self.settings.ignorecache:
            logger.info("Se ignora la caché del catálogo")
            return False
        if not self.compile_time:
            logger.debug("No hay tiempo de compilación registrado")
            return False
        if self.facts_changed(facts):
            if not self.local:
                logger.info("Los facts cambiaron; se recompila")
            return False
        try:
            newcompile = self.driver.freshness()
        except ProtocolError as e:
            logger.debug("No se pudo consultar la frescura: %s", e)
            return False
        except Exception as e:
            logger.warning("Error inesperado al consultar la frescura: %s", e)
            return False
        if newcompile - self.compile_time < self.settings.freshness_tolerance:
            return True
        logger.debug("Compilación remota %s más nueva que la local %s", newcompile, self.compile_time)
        return False

    # --- plugins ---

    def getplugins(self) -> None:
        changed = download(
            "plugins", self.settings.pluginsource, self.settings.plugindest,
            self.settings.pluginsignore, self.timeout(),
        )
        if changed:
            reload_changed(self.settings.plugindest, changed)

    def getfacts(self) -> None:
        changed = download(
            "facts", self.settings.factsource, self.settings.factdest,
            self.settings.factsignore, self.timeout(),
        )
        if changed:
            self.fact_source.reload()

    # --- obtención del catálogo ---

    def getconfig(self) -> None:
        """
        Deja en self.catalog el catálogo a aplicar (o None si no hay ninguno).

        Raises:
            ProtocolError: no se obtuvo ningún fact
        """
        self.dostorage()
        started = time.monotonic()
        facts = self.facts()
        if not facts:
            raise ProtocolError("No se pudo obtener ningún fact")
        logger.debug("Facts obtenidos en %.2f s", time.monotonic() - started)

        if self.settings.pluginsync:
            self.getplugins()

        if (self.catalog is not None or self.cachefile.exists()) and self.fresh(facts):
            logger.info("La configuración está al día")
            if self.use_cached_config():
                return

        logger.debug("Obteniendo catálogo")
        payload = self.get_actual_config(facts)
        if payload is None:
            self.use_cached_config(because_of_failure=True)
            return

        try:
            text = decode_payload(payload)
            document = load_document(text)
        except ProtocolError as e:
            self._fallback(f"No se pudo leer el catálogo recibido: {e}")
            return

        self.setclasses(document.classes)

        if self.catalog is not None:
            self.clear()
        catalog = None
        try:
            catalog = document.to_catalog(self.registry)
            catalog.relationship_graph().topsort()
        except AgentError as e:
            if catalog is not None:
                catalog.clear()
            self._fallback(f"No se pudo construir el catálogo: {e}")
            return

        self.catalog = catalog
        if not catalog.from_cache:
            self.cache(text)
        catalog.host_config = True

        self.compile_time = self._fetched_at
        configuration = self.storage.cache("configuration")
        configuration["facts"] = facts
        configuration["compile_time"] = self.compile_time

    def _fallback(self, message: str) -> None:
        if self.use_cached_config(because_of_failure=True):
            logger.warning("%s; se usa el catálogo en caché", message)
        else:
            logger.error(message)

    def get_actual_config(self, facts: Dict[str, str]) -> Optional[str]:
        """Descarga remota con tiempo acotado. None si falla o expira."""
        try:
            return self.get_remote_config(facts)
        except FetchTimeoutError as e:
            logger.error("%s", e)
        except ProtocolError as e:
            logger.error("No se pudo obtener el catálogo: %s", e)
        except Exception as e:
            logger.exception("Error inesperado del compilador: %s", e)
        return None

    def get_remote_config(self, facts: Dict[str, str]) -> str:
        """
        Raises:
            FetchTimeoutError: se superó timeout()
            ProtocolError: el compilador falló o devolvió un catálogo vacío
        """
        textfacts = encode_facts(facts)
        timeout = self.timeout()
        started = time.monotonic()
        if not self._fetch_lock.acquire(timeout=timeout):
            raise FetchTimeoutError(f"Otra descarga del catálogo sigue en curso tras {timeout} s")

        pool = ThreadPoolExecutor(max_workers=1)
        try:
            future = pool.submit(self.driver.getconfig, textfacts, "yaml")
        except Exception:
            self._fetch_lock.release()
            pool.shutdown(wait=False)
            raise
        # El lock se suelta cuando el hilo termina, aunque la espera haya expirado
        future.add_done_callback(lambda _: self._fetch_lock.release())
        try:
            payload = future.result(timeout=max(0.0, started + timeout - time.monotonic()))
        except FuturesTimeoutError as e:
            raise FetchTimeoutError(f"La descarga del catálogo superó {timeout} s") from e
        finally:
            pool.shutdown(wait=False)
        logger.info("Catálogo obtenido en %.2f s", time.monotonic() - started)
        if not payload:
            raise ProtocolError("El compilador devolvió un catálogo vacío")
        self._fetched_at = time.time()
        return payload

    # --- caché ---

    def cache(self, text: str) -> None:
        """Escribe la caché con archivo temporal + rename atómico."""
        path = self.cachefile
        ensure_parent(path)
        fd, tmp = tempfile.mkstemp(prefix=path.name + ".", suffix=".tmp", dir=str(path.parent))
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                f.write(text)
            os.chmod(tmp, 0o660)
            os.replace(tmp, path)
        except OSError as e:
            if os.path.exists(tmp):
                os.unlink(tmp)
            logger.error("No se pudo escribir la caché %s: %s", path, e)

    def retrievecache(self) -> Optional[str]:
        try:
            return self.cachefile.read_text(encoding="utf-8")
        except FileNotFoundError:
            return None
        except OSError as e:
            logger.warning("No se pudo leer la caché %s: %s", self.cachefile, e)
            return None

    def use_cached_config(self, because_of_failure: bool = False) -> bool:
        """
        Usa el catálogo en memoria o el de la caché en disco.

        Args:
            because_of_failure: Se llega aquí porque la descarga falló

        Returns:
            True si queda un catálogo listo para aplicar
        """
        if because_of_failure and not self.settings.usecacheonfailure:
            self.clear()
            logger.warning("No se usa la caché tras el fallo (usecacheonfailure desactivado)")
            return False
        if self.catalog is not None:
            return True

        text = self.retrievecache()
        if text is None:
            return False
        try:
            catalog = load_catalog(text, self.registry)
        except AgentError as e:
            logger.warning("Catálogo en caché inválido: %s", e)
            return False
        catalog.from_cache = True
        catalog.host_config = True
        self.catalog = catalog
        if because_of_failure:
            logger.warning("Usando el catálogo en caché")
        else:
            logger.info("Usando el catálogo en caché")
        return True

    def setclasses(self, classes: List[str]) -> None:
        """Guarda la lista de clases del nodo (solo con compilador remoto)."""
        if self.local:
            return
        if not classes:
            logger.debug("No hay clases que guardar")
            return
        path = Path(self.settings.classfile)
        try:
            ensure_parent(path)
            path.write_text("\n".join(classes) + "\n", encoding="utf-8")
        except OSError as e:
            logger.error("No se pudo crear el archivo de clases %s: %s", path, e)

    def clear(self) -> None:
        if self.catalog is not None:
            self.catalog.clear()
        self.catalog = None

    # --- ejecución ---

    def splay(self) -> None:
        """Espera un tiempo fijo por nodo antes de ejecutar, elegido una vez."""
        if not self.settings.splay:
            return
        configuration = self.storage.cache("configuration")
        delay = configuration.get("splay_time")
        if delay is None:
            limit = int(self.settings.splaylimit)
            delay = random.randrange(limit) if limit > 0 else 0
            configuration["splay_time"] = delay
        logger.info("Durmiendo %s segundos (splay activado)", delay)
        self.sleep(delay)

    def run(self, tags: Optional[List[str]] = None, noop: Optional[bool] = None) -> Optional[RunReport]:
        """
        Una ejecución completa. Los errores de obtención se registran, no se propagan.

        Returns:
            El reporte de la transacción, o None si no se aplicó nada

        Raises:
            StateCorruptionError: el estado corrupto no se pudo descartar
        """
        tags = self.settings.tags if tags is None else tags
        noop = self.settings.noop if noop is None else noop
        report: Optional[RunReport] = None
        got_lock = False
        try:
            self.dostorage()
            self.splay()
            if not self.lockfile.lock():
                logger.info("El lock %s existe; se omite la ejecución", self.lockfile.path)
                return None
            got_lock = True

            started = time.monotonic()
            try:
                self.getconfig()
            except StateCorruptionError:
                raise
            except Exception as e:
                logger.error("No se pudo obtener la configuración: %s", e)

            if self.catalog is not None:
                self.catalog.retrieval_duration = time.monotonic() - started
                logger.info("Aplicando catálogo %s", self.catalog.version or "-")
                transaction = Transaction(self.catalog, tags=tags, noop=noop)
                try:
                    transaction.evaluate()
                except CatalogError as e:
                    logger.error("Catálogo no aplicable: %s", e)
                report = transaction.report
                logger.info("Aplicación terminada en %.2f s", report.duration or 0.0)
        finally:
            if got_lock:
                self.lockfile.unlock()
            self.clear()
            if self.storage.loaded:
                try:
                    self.storage.store()
                except OSError as e:
                    logger.error("No se pudo guardar el estado %s: %s", self.storage.path, e)
            if self._restart_requested:
                self._restart_requested = False
                logger.info("Reiniciando por petición diferida")
                self.restart_hook()

        self.last_report = report
        return report

    # --- control ---

    def restart(self) -> None:
        """Pide un reinicio; si hay una ejecución en curso se difiere hasta el final."""
        if self.lockfile.mine():
            logger.info("Reinicio diferido hasta terminar la ejecución")
            self._restart_requested = True
            return
        self.restart_hook()

    @property
    def restart_requested(self) -> bool:
        return self._restart_requested

    def running(self) -> bool:
        return self.lockfile.locked()

    def disable(self) -> bool:
        """Bloquea las ejecuciones con un lock anónimo."""
        return self.lockfile.lock(anonymous=True)

    def enable(self) -> bool:
        return self.lockfile.unlock(anonymous=True)

"""
Configuración del agente.

Un único AgentSettings explícito se construye en el punto de entrada y se
pasa a los constructores (cliente, storage, lock). No hay settings globales.

Fuentes, en orden de prioridad:
  1. variables de entorno LSXAGENT_<CAMPO> (también desde .env)
  2. archivo YAML (agent.yaml)
  3. valores por defecto
"""

import os
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

import yaml
from pydantic import BaseModel, Field, ValidationError as PydanticValidationError, model_validator

from lsxagent.core.errors import ConfigError
from lsxagent.core.runtime.resolver import default_node_name, state_root


ENV_PREFIX = "LSXAGENT_"

DEFAULT_DYNAMIC_FACTS = "memorysize,memoryfree,swapsize,swapfree"


class AgentSettings(BaseModel):
    """Parámetros de una ejecución del agente."""

    node_name: str = Field(default_factory=default_node_name, description="Identificador del nodo ante el compilador")
    environment: str = Field("production", description="Entorno; se añade como fact si falta")

    statedir: Path = Field(default_factory=state_root)
    statefile: Optional[Path] = None
    localconfig: Optional[Path] = Field(None, description="Base de la caché del catálogo (sin extensión)")
    lockfile: Optional[Path] = None
    classfile: Optional[Path] = None

    server: Optional[str] = Field(None, description="URL del compilador; None = modo local")
    configtimeout: Union[int, str] = Field(120, description="Segundos máximos para obtener el catálogo")

    splay: bool = False
    splaylimit: int = Field(1800, ge=0)

    ignorecache: bool = False
    usecacheonfailure: bool = True
    dynamicfacts: str = DEFAULT_DYNAMIC_FACTS
    downcasefacts: bool = False
    freshness_tolerance: float = Field(1, description="Deriva máxima (s) entre compilación remota y local")

    pluginsync: bool = False
    pluginsource: Optional[Path] = None
    plugindest: Optional[Path] = None
    pluginsignore: str = ".svn CVS .git"

    factsync: bool = False
    factsource: Optional[Path] = None
    factdest: Optional[Path] = None
    factsignore: str = ".svn CVS .git"

    noop: bool = False
    tags: List[str] = Field(default_factory=list)

    class Config:
        validate_assignment = True

    @model_validator(mode="after")
    def fill_state_paths(self) -> "AgentSettings":
        """Las rutas no indicadas cuelgan de statedir."""
        base = self.statedir
        defaults = {
            "statefile": base / "state.yaml",
            "localconfig": base / "localconfig",
            "lockfile": base / "agent.lock",
            "classfile": base / "classes.txt",
            "plugindest": base / "plugins",
            "factdest": base / "facts",
        }
        for name, value in defaults.items():
            if getattr(self, name) is None:
                # object.__setattr__ evita re-disparar la validación en bucle
                object.__setattr__(self, name, value)
        return self

    @property
    def local(self) -> bool:
        """Sin servidor configurado el catálogo se compila en proceso."""
        return not self.server


def _env_overrides(environ: Dict[str, str]) -> Dict[str, Any]:
    """Extrae LSXAGENT_* como overrides en minúsculas."""
    fields = AgentSettings.model_fields
    out: Dict[str, Any] = {}
    for key, value in environ.items():
        if not key.startswith(ENV_PREFIX):
            continue
        name = key[len(ENV_PREFIX):].lower()
        if name not in fields:
            continue
        if name == "tags":
            out[name] = [t.strip() for t in value.split(",") if t.strip()]
        else:
            out[name] = value
    return out


def load_settings(path: Optional[Path] = None, environ: Optional[Dict[str, str]] = None) -> AgentSettings:
    """
    Construye AgentSettings desde YAML + entorno.

    Args:
        path: Archivo YAML; si no existe se usan valores por defecto
        environ: Entorno a usar (por defecto os.environ)

    Returns:
        AgentSettings validado

    Raises:
        ConfigError: YAML ilegible o valores inválidos
    """
    data: Dict[str, Any] = {}
    if path is not None and path.exists():
        try:
            with open(path, "r", encoding="utf-8") as f:
                loaded = yaml.safe_load(f) or {}
        except (OSError, yaml.YAMLError) as e:
            raise ConfigError(f"No se pudo leer {path}: {e}") from e
        if not isinstance(loaded, dict):
            raise ConfigError(f"{path} debe contener un mapeo YAML")
        data.update(loaded)

    data.update(_env_overrides(os.environ if environ is None else environ))

    try:
        return AgentSettings(**data)
    except PydanticValidationError as e:
        raise ConfigError(f"Configuración inválida: {e}") from e

"""
Tipo `file`: existencia y permisos de un path.

- ensure: present | file | directory | absent
- mode: permisos octales ("644", "0755" o entero)
- links: manage | follow | ignore (con follow se siguen los symlinks)

El provider posix es el único que toca el filesystem (stat, chmod, mkdir).
"""

import logging
import os
import stat
from pathlib import Path
from typing import Any, Optional

from lsxagent.core.errors import ValidationError
from lsxagent.core.infra.base import BaseProvider
from lsxagent.core.resource.attributes import Parameter, Property
from lsxagent.core.resource.registry import TypeDescriptor
from lsxagent.core.resource.resource import Resource
from lsxagent.core.resource.values import ABSENT, TokenValue


logger = logging.getLogger(__name__)

FILE = TokenValue("file")
DIRECTORY = TokenValue("directory")
PRESENT = TokenValue("present")


class PathParameter(Parameter):
    name = "path"
    isnamevar = True
    doc = "Ruta absoluta del archivo."

    def validate(self, value: Any) -> None:
        if not str(value).startswith("/"):
            raise ValidationError(f"{self.resource.type}[{value}]: el path debe ser absoluto")

    def munge(self, value: Any) -> Any:
        text = str(value)
        return text.rstrip("/") or "/"


class LinksParameter(Parameter):
    name = "links"
    doc = "Cómo tratar symlinks: manage (no seguir), follow o ignore."
    default = "manage"
    allowed = ("manage", "follow", "ignore")

    def munge(self, value: Any) -> Any:
        return str(value).strip().lower()


class FileEnsure(Property):
    name = "ensure"
    doc = "Tipo de nodo que debe existir en el path."
    allowed = (PRESENT, FILE, DIRECTORY, ABSENT)

    def munge(self, value: Any) -> Any:
        if isinstance(value, TokenValue):
            return value
        return TokenValue(str(value).strip().lower())

    def property_matches(self, current: Any, desired: Any) -> bool:
        if desired == PRESENT:
            return current in (FILE, DIRECTORY)
        return current == desired

    def sync(self) -> Optional[str]:
        super().sync()
        desired = self.should
        if desired == ABSENT:
            return "file_removed"
        if desired == DIRECTORY:
            return "directory_created"
        return "file_created"


class ModeProperty(Property):
    """
    Permisos del archivo. Solo se admite el modo completo (no u+rwx).

    En directorios, cada bit de lectura implica el de ejecución del mismo rol;
    el ajuste se aplica a los valores `should`, nunca al valor leído.
    """

    name = "mode"
    doc = "Permisos octales del archivo."
    event = "file_changed"
    value_base = 8

    def __init__(self, resource: Resource):
        super().__init__(resource)
        self._fixed = False

    def munge(self, value: Any) -> Any:
        if isinstance(value, bool):
            raise ValidationError(f"Los modos solo pueden ser números, no {value!r}")
        if isinstance(value, int):
            return value
        text = str(value).strip()
        if not text.isdigit():
            raise ValidationError(f"Los modos solo pueden ser números, no {value!r}")
        try:
            return int(text, 8)
        except ValueError as e:
            raise ValidationError(f"{text!r} no es un modo octal válido") from e

    @staticmethod
    def dirmask(value: int) -> int:
        if value & 0o400:
            value |= 0o100
        if value & 0o040:
            value |= 0o010
        if value & 0o004:
            value |= 0o001
        return value

    def _unmanaged_link(self) -> bool:
        if self.resource["links"] == "follow":
            return False
        return self.resource.provider.is_link()

    def retrieve(self) -> Any:
        if self._unmanaged_link():
            return TokenValue("link")
        if not self._fixed and self._should and self.resource.provider.is_directory():
            self._should = [self.dirmask(s) for s in self._should]
            self._fixed = True
        return super().retrieve()

    def insync(self, current: Any) -> bool:
        if self._unmanaged_link():
            logger.debug("%s: no se gestiona el modo de un symlink", self.resource.ref)
            return True
        return super().insync(current)

    def sync(self) -> Optional[str]:
        if self.resource.provider.get("ensure") == ABSENT:
            logger.debug("%s: el archivo no existe; no se puede cambiar el modo", self.resource.ref)
            return None
        return super().sync()

    def to_data(self) -> Any:
        if len(self._should) == 1:
            return "%o" % self._should[0]
        return ["%o" % s for s in self._should]


class PosixFileProvider(BaseProvider):
    """Lectura/escritura de archivos con os/stat."""

    name = "posix"
    features = ("manages_modes",)

    @property
    def path(self) -> Path:
        return Path(self.resource["path"])

    def _stat(self) -> Optional[os.stat_result]:
        follow = self.resource["links"] == "follow"
        try:
            return os.stat(self.path) if follow else os.lstat(self.path)
        except FileNotFoundError:
            return None

    def is_link(self) -> bool:
        st = self._stat()
        return st is not None and stat.S_ISLNK(st.st_mode)

    def is_directory(self) -> bool:
        return self.path.is_dir()

    def ensure(self) -> Any:
        st = self._stat()
        if st is None:
            return ABSENT
        if stat.S_ISDIR(st.st_mode):
            return DIRECTORY
        return FILE

    def set_ensure(self, value: Any) -> None:
        if value == ABSENT:
            if self.path.is_dir() and not self.path.is_symlink():
                self.path.rmdir()
            elif self.path.exists() or self.path.is_symlink():
                self.path.unlink()
        elif value == DIRECTORY:
            self.path.mkdir()
        else:
            self.path.touch()

    def mode(self) -> Any:
        st = self._stat()
        if st is None:
            return ABSENT
        return stat.S_IMODE(st.st_mode)

    def set_mode(self, value: int) -> None:
        os.chmod(self.path, value)


DESCRIPTOR = TypeDescriptor(
    "file",
    parameters=[PathParameter, LinksParameter],
    properties=[FileEnsure, ModeProperty],
    providers=[PosixFileProvider],
    doc="Archivos y directorios locales.",
)

"""
Tipo `notify`: emite un mensaje en el log del agente en cada ejecución.

Nunca está en sincronía, así que sirve para comprobar el orden de una
transacción y para disparar refrescos aguas abajo.
"""

import logging
from typing import Any, Optional

from lsxagent.core.infra.base import BaseProvider
from lsxagent.core.resource.attributes import Parameter, Property
from lsxagent.core.resource.registry import TypeDescriptor
from lsxagent.core.resource.values import ABSENT


logger = logging.getLogger(__name__)


class MessageProperty(Property):
    name = "message"
    doc = "Mensaje a emitir; por defecto el título."
    event = "triggered"

    @staticmethod
    def default(resource):
        return resource.title

    def retrieve(self) -> Any:
        return ABSENT

    def insync(self, current: Any) -> bool:
        return False

    def sync(self) -> Optional[str]:
        if self.resource["withpath"]:
            logger.info("%s: %s", self.resource.ref, self.should)
        else:
            logger.info("%s", self.should)
        return self.event_name()


class WithPathParameter(Parameter):
    name = "withpath"
    doc = "Incluir la referencia del recurso en el mensaje."
    default = False

    def munge(self, value: Any) -> Any:
        if isinstance(value, str):
            return value.strip().lower() == "true"
        return bool(value)


class LogProvider(BaseProvider):
    name = "log"


DESCRIPTOR = TypeDescriptor(
    "notify",
    parameters=[WithPathParameter],
    properties=[MessageProperty],
    providers=[LogProvider],
    doc="Mensajes arbitrarios en el log del agente.",
)

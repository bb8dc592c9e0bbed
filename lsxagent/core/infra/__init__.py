"""
Contratos y base para providers de recursos.

Los providers concretos (posix, paquetes, servicios) implementan estos contratos;
el core no depende de ningún provider concreto.
"""

from lsxagent.core.infra.base import BaseProvider
from lsxagent.core.infra.contracts import ProviderContract

__all__ = ["BaseProvider", "ProviderContract"]

"""
Cliente: obtención, caché y aplicación del catálogo del nodo.
"""

from lsxagent.core.client.driver import CompilerDriver, FileCompiler, HTTPCompilerDriver, LocalCompilerDriver
from lsxagent.core.client.facts import FactSource, StaticFactSource, SystemFactSource, collect_facts
from lsxagent.core.client.master import CatalogClient

__all__ = [
    "CatalogClient",
    "CompilerDriver",
    "FactSource",
    "FileCompiler",
    "HTTPCompilerDriver",
    "LocalCompilerDriver",
    "StaticFactSource",
    "SystemFactSource",
    "collect_facts",
]

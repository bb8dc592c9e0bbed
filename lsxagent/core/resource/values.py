"""
Formas de valor que manejan las properties.

Variante cerrada: entero, token enumerado o texto. Cada forma tiene su
formateador; un valor que no encaja en ninguna es un error de programación.
"""

from dataclasses import dataclass
from typing import Any, Union

from lsxagent.core.errors import DevError


@dataclass(frozen=True)
class IntegerValue:
    value: int
    base: int = 10


@dataclass(frozen=True)
class TokenValue:
    """Símbolo enumerado (absent, present, directory...)."""
    name: str


@dataclass(frozen=True)
class TextValue:
    text: str


Value = Union[IntegerValue, TokenValue, TextValue]

ABSENT = TokenValue("absent")
PRESENT = TokenValue("present")


def format_value(value: Value) -> str:
    """Representación legible para logs y eventos."""
    if isinstance(value, IntegerValue):
        if value.base == 8:
            return "%o" % value.value
        if value.base == 16:
            return "%x" % value.value
        return str(value.value)
    if isinstance(value, TokenValue):
        return value.name
    if isinstance(value, TextValue):
        return value.text
    raise DevError(f"Forma de valor no soportada: {value!r}")


def wrap(raw: Any, base: int = 10) -> Value:
    """Envuelve un valor nativo en su variante."""
    if isinstance(raw, (IntegerValue, TokenValue, TextValue)):
        return raw
    if isinstance(raw, bool):
        return TokenValue("true" if raw else "false")
    if isinstance(raw, int):
        return IntegerValue(raw, base)
    if isinstance(raw, str):
        return TextValue(raw)
    raise DevError(f"No se puede representar {raw!r}")

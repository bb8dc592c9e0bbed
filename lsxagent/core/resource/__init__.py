"""
Resource: máquina de estados property/recurso y registro de tipos.
"""

from lsxagent.core.resource.attributes import MetaParameter, Parameter, Property
from lsxagent.core.resource.reference import ResourceRef, canonical_type
from lsxagent.core.resource.registry import TypeDescriptor, TypeRegistry, default_registry
from lsxagent.core.resource.resource import Relationship, Resource
from lsxagent.core.resource.values import ABSENT, IntegerValue, TextValue, TokenValue, format_value

__all__ = [
    "ABSENT",
    "IntegerValue",
    "MetaParameter",
    "Parameter",
    "Property",
    "Relationship",
    "Resource",
    "ResourceRef",
    "TextValue",
    "TokenValue",
    "TypeDescriptor",
    "TypeRegistry",
    "canonical_type",
    "default_registry",
    "format_value",
]

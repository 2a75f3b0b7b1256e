"""
Metaclass-based auto-registration for pluggable classes.

This module provides a generic metaclass that automatically registers
classes under the value of a registry key attribute.
"""

from abc import ABCMeta
from typing import Any, Dict, Type


class AutoRegisterMeta(ABCMeta):
    """
    Metaclass that automatically registers classes in a class-level registry.

    Classes using this metaclass specify the name of their registry key
    attribute via __registry_key__. The registry is stored in __registry__
    on the class that declares __registry_key__, in definition order.

    Example:
        class Base(metaclass=AutoRegisterMeta):
            __registry_key__ = '_coercer_name'

        class Derived(Base):
            _coercer_name = 'uuid'

        # Derived is now in Base.__registry__['uuid']
    """

    def __new__(mcs, name: str, bases: tuple, namespace: Dict[str, Any]) -> Type:
        """Create a new class and register it if it has a registry key."""
        cls = super().__new__(mcs, name, bases, namespace)

        # Find the nearest class declaring the registry key attribute
        registry_base = None
        for base_cls in cls.__mro__:
            if '__registry_key__' in vars(base_cls):
                registry_base = base_cls
                break

        if registry_base is None:
            return cls

        if '__registry__' not in vars(registry_base):
            registry_base.__registry__ = {}

        # The declaring base itself is not registered
        if cls is registry_base:
            return cls

        key_value = getattr(cls, registry_base.__registry_key__, None)
        if key_value is not None:
            registry_base.__registry__[key_value] = cls

        return cls

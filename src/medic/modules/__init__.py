"""Module descriptor registry: static data for every known workspace module."""

from medic.modules.catalogue import BUILTIN_DESCRIPTORS, ModuleRegistry, create_default_registry
from medic.modules.descriptor import (
    CONFIG_FILES,
    LAYER_NAMES,
    PACKAGE_JSON,
    TSCONFIG_JSON,
    ModuleDescriptor,
)

__all__ = [
    "BUILTIN_DESCRIPTORS",
    "CONFIG_FILES",
    "LAYER_NAMES",
    "ModuleDescriptor",
    "ModuleRegistry",
    "PACKAGE_JSON",
    "TSCONFIG_JSON",
    "create_default_registry",
]

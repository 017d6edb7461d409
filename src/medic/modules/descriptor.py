"""Module descriptors.

A ModuleDescriptor is the static data record describing one workspace
module: its dependency layer, the files and third-party dependencies it
must have, the directories it is laid out in, the workspace modules it
depends on, and the service configuration files it ships. It also renders
the default ``package.json``, ``tsconfig.json`` and placeholder source files
used when a module is repaired, rebuilt or reset.

All per-module variation in the engine is expressed through descriptors;
the recovery interpreter and the health checks are generic.
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from pathlib import PurePosixPath
from typing import Any

from medic.core import constants
from medic.models.module import RecoveryStrategy

PACKAGE_JSON = "package.json"
TSCONFIG_JSON = "tsconfig.json"
CONFIG_FILES: tuple[str, ...] = (PACKAGE_JSON, TSCONFIG_JSON)

LAYER_NAMES: dict[int, str] = {0: "Core", 1: "Foundation", 2: "Business"}

_DEV_DEPENDENCIES: dict[str, str] = {
    "@types/node": "^20.0.0",
    "typescript": "^5.3.0",
    "tsup": "^8.0.0",
    "jest": "^29.7.0",
    "@types/jest": "^29.5.0",
}

_SCRIPTS: dict[str, str] = {
    "build": "tsup src/index.ts --format cjs,esm --dts",
    "dev": "tsup src/index.ts --format cjs,esm --dts --watch",
    "test": "jest",
    "type-check": "tsc --noEmit",
}


@dataclass(frozen=True)
class ModuleDescriptor:
    """Static description of one workspace module.

    Attributes:
        module_id: Stable identifier, also the directory name under packages/.
        name: Human-readable name used in issue text and step names.
        layer: Dependency layer. 0 is core, 1 depends on 0, 2 on 0 and 1.
        required_files: Paths (relative to the module dir) that must exist.
        required_dependencies: npm packages package.json must declare.
        workspace_dependencies: Ids of workspace modules this one depends on.
        service_configs: Service configuration files restored by rebuild/reset.
        extra_directories: Canonical directories not implied by required_files.
        critical: Whether the module is a stabilization target.
        description: One-line summary.
    """

    module_id: str
    name: str
    layer: int
    required_files: tuple[str, ...]
    required_dependencies: tuple[str, ...] = ()
    workspace_dependencies: tuple[str, ...] = ()
    service_configs: tuple[str, ...] = ()
    extra_directories: tuple[str, ...] = ("src/types", "tests")
    critical: bool = False
    description: str = ""
    supported_strategies: tuple[RecoveryStrategy, ...] = field(
        default=(RecoveryStrategy.REPAIR, RecoveryStrategy.REBUILD, RecoveryStrategy.RESET)
    )

    def __post_init__(self) -> None:
        if self.layer not in LAYER_NAMES:
            raise ValueError(f"layer must be 0, 1 or 2, got {self.layer}")
        for required in CONFIG_FILES:
            if required not in self.required_files:
                raise ValueError(f"{self.module_id}: {required} must be a required file")

    @property
    def directories(self) -> tuple[str, ...]:
        """Canonical directories, parents first."""
        dirs: set[str] = set(self.extra_directories)
        for path in (*self.required_files, *self.service_configs):
            for parent in PurePosixPath(path).parents:
                if str(parent) != ".":
                    dirs.add(str(parent))
        return tuple(sorted(dirs, key=lambda d: (d.count("/"), d)))

    @property
    def source_files(self) -> tuple[str, ...]:
        """Required files other than package.json and tsconfig.json."""
        return tuple(f for f in self.required_files if f not in CONFIG_FILES)

    @property
    def is_large(self) -> bool:
        return len(self.required_files) > constants.LARGE_MODULE_FILE_THRESHOLD

    @property
    def has_many_dependencies(self) -> bool:
        return len(self.required_dependencies) > constants.LARGE_MODULE_DEPENDENCY_THRESHOLD

    def package_name(self, scope: str) -> str:
        return f"{scope}/{self.module_id}"

    def default_package_json(self, scope: str) -> dict[str, Any]:
        """Render the default package.json for this module.

        Required ``@types/*`` packages land in devDependencies, everything
        else in dependencies. Workspace dependencies use the
        ``workspace:*`` protocol under ``scope``.
        """
        dependencies: dict[str, str] = {}
        dev_dependencies = dict(_DEV_DEPENDENCIES)
        for dep in self.required_dependencies:
            if dep.startswith("@types/"):
                dev_dependencies.setdefault(dep, "latest")
            else:
                dependencies[dep] = "latest"
        for dep_id in self.workspace_dependencies:
            dependencies[f"{scope}/{dep_id}"] = "workspace:*"

        return {
            "name": self.package_name(scope),
            "version": "1.0.0",
            "description": self.description or f"{self.name} module",
            "main": "dist/index.js",
            "types": "dist/index.d.ts",
            "scripts": dict(_SCRIPTS),
            "dependencies": dependencies,
            "devDependencies": dev_dependencies,
        }

    def default_tsconfig(self) -> dict[str, Any]:
        """Render the default tsconfig.json extending the workspace base."""
        return {
            "extends": "../../tsconfig.base.json",
            "compilerOptions": {
                "outDir": "./dist",
                "rootDir": "./src",
                "declaration": True,
                "declarationMap": True,
                "sourceMap": True,
            },
            "include": ["src/**/*"],
            "exclude": ["node_modules", "dist", "tests/**/*"],
        }

    def default_content(self, path: str, scope: str) -> str:
        """Default body for a required file or service config."""
        if path == PACKAGE_JSON:
            return json.dumps(self.default_package_json(scope), indent=2) + "\n"
        if path == TSCONFIG_JSON:
            return json.dumps(self.default_tsconfig(), indent=2) + "\n"
        if path.endswith(".json"):
            return "{}\n"
        stem = PurePosixPath(path).stem
        if path == "src/index.ts":
            return f"// {self.name} module entry point\nexport {{}};\n"
        return f"// {self.name}: {stem}\nexport {{}};\n"


__all__ = [
    "CONFIG_FILES",
    "LAYER_NAMES",
    "ModuleDescriptor",
    "PACKAGE_JSON",
    "TSCONFIG_JSON",
]

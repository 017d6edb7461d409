"""Filesystem operations used by recovery steps.

Every function here is synchronous and operates inside one module
directory. Mutations never reach outside ``module_dir``.
"""

from __future__ import annotations

import copy
import json
import shutil
from pathlib import Path
from typing import Any

from medic.core import constants
from medic.modules.descriptor import PACKAGE_JSON, TSCONFIG_JSON, ModuleDescriptor


def load_json_object(path: Path) -> dict[str, Any] | None:
    """Parse a JSON object, returning None if absent or unparseable."""
    if not path.is_file():
        return None
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except (json.JSONDecodeError, UnicodeDecodeError):
        return None
    return data if isinstance(data, dict) else None


def write_json(path: Path, data: dict[str, Any]) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(data, indent=2) + "\n", encoding="utf-8")


def merge_package_json(default: dict[str, Any], preferred: dict[str, Any]) -> dict[str, Any]:
    """Overlay ``preferred`` onto ``default``.

    Top-level keys come from ``preferred``; dependencies, devDependencies
    and scripts are unioned with ``preferred`` winning on conflict.
    """
    merged = copy.deepcopy(default)
    merged.update(copy.deepcopy(preferred))
    for section in constants.MERGED_PACKAGE_SECTIONS:
        base = default.get(section)
        overlay = preferred.get(section)
        if isinstance(base, dict) or isinstance(overlay, dict):
            merged[section] = {
                **(base if isinstance(base, dict) else {}),
                **(overlay if isinstance(overlay, dict) else {}),
            }
    return merged


def repair_package_json(descriptor: ModuleDescriptor, module_dir: Path, scope: str) -> bool:
    """Restore a missing or unparseable package.json.

    A file that parses is left untouched apart from an empty ``name`` or
    ``version``, which get the default values.

    Returns:
        True if the file was written.
    """
    path = module_dir / PACKAGE_JSON
    default = descriptor.default_package_json(scope)
    existing = load_json_object(path)
    if existing is None:
        write_json(path, default)
        return True

    missing = [key for key in ("name", "version") if not existing.get(key)]
    if not missing:
        return False
    for key in missing:
        existing[key] = default[key]
    write_json(path, existing)
    return True


def repair_tsconfig(descriptor: ModuleDescriptor, module_dir: Path) -> bool:
    """Restore a missing or broken tsconfig.json.

    Returns:
        True if the file was written.
    """
    path = module_dir / TSCONFIG_JSON
    default = descriptor.default_tsconfig()
    existing = load_json_object(path)
    if existing is None:
        write_json(path, default)
        return True
    if isinstance(existing.get("compilerOptions"), dict):
        return False
    existing["compilerOptions"] = default["compilerOptions"]
    write_json(path, existing)
    return True


def write_missing_files(
    descriptor: ModuleDescriptor,
    module_dir: Path,
    scope: str,
    paths: tuple[str, ...],
) -> list[str]:
    """Write default bodies for the given paths that do not exist yet."""
    written: list[str] = []
    for relative in paths:
        target = module_dir / relative
        if target.is_file():
            continue
        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_text(descriptor.default_content(relative, scope), encoding="utf-8")
        written.append(relative)
    return written


def create_directories(descriptor: ModuleDescriptor, module_dir: Path) -> list[str]:
    """Create the module dir and its canonical directories; return those created."""
    created: list[str] = []
    module_dir.mkdir(parents=True, exist_ok=True)
    for relative in descriptor.directories:
        target = module_dir / relative
        if not target.is_dir():
            target.mkdir(parents=True, exist_ok=True)
            created.append(relative)
    return created


def remove_paths(module_dir: Path, paths: tuple[str, ...]) -> list[str]:
    """Remove files or directories relative to ``module_dir``; return those removed."""
    removed: list[str] = []
    for relative in paths:
        target = module_dir / relative
        if target.is_dir() and not target.is_symlink():
            shutil.rmtree(target)
            removed.append(relative)
        elif target.exists() or target.is_symlink():
            target.unlink()
            removed.append(relative)
    return removed


def materialize_module(descriptor: ModuleDescriptor, module_dir: Path, scope: str) -> None:
    """Write a complete default module (directories, configs, required files)."""
    create_directories(descriptor, module_dir)
    write_json(module_dir / PACKAGE_JSON, descriptor.default_package_json(scope))
    write_json(module_dir / TSCONFIG_JSON, descriptor.default_tsconfig())
    write_missing_files(descriptor, module_dir, scope, descriptor.source_files)
    write_missing_files(descriptor, module_dir, scope, descriptor.service_configs)


def backup_files(descriptor: ModuleDescriptor, module_dir: Path) -> list[str]:
    """Copy configuration files into the module's backup directory."""
    backup_dir = module_dir / constants.BACKUP_DIR_NAME
    copied: list[str] = []
    for relative in (*constants.BACKUP_CONFIG_FILES, *descriptor.service_configs):
        source = module_dir / relative
        if not source.is_file():
            continue
        target = backup_dir / relative
        target.parent.mkdir(parents=True, exist_ok=True)
        shutil.copy2(source, target)
        copied.append(relative)
    return copied


def remove_backup(module_dir: Path) -> bool:
    backup_dir = module_dir / constants.BACKUP_DIR_NAME
    if backup_dir.is_dir():
        shutil.rmtree(backup_dir)
        return True
    return False


__all__ = [
    "backup_files",
    "create_directories",
    "load_json_object",
    "materialize_module",
    "merge_package_json",
    "remove_backup",
    "remove_paths",
    "repair_package_json",
    "repair_tsconfig",
    "write_json",
    "write_missing_files",
]

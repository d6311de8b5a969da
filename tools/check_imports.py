"""Enforce story_tree layering: each layer may only import the layers beneath it."""

from __future__ import annotations

import ast
from collections.abc import Iterator
from pathlib import Path

PACKAGE = "story_tree"
PROJECT_ROOT = Path(__file__).resolve().parents[1]
DEFAULT_SOURCE_ROOT = PROJECT_ROOT / "src" / PACKAGE

# Layers missing from this map (api, cli) sit on top and may import anything.
ALLOWED_IMPORTS: dict[str, frozenset[str]] = {
    "domain": frozenset(),
    "core": frozenset({"domain"}),
    "adapters": frozenset({"domain", "core"}),
    "application": frozenset({"domain", "core", "adapters"}),
}
LAYERS = frozenset({*ALLOWED_IMPORTS, "api", "cli"})


def _module_parts(path: Path, source_root: Path) -> list[str] | None:
    try:
        relative = path.relative_to(source_root).with_suffix("")
    except ValueError:
        return None
    return [PACKAGE, *relative.parts]


def _resolve_from_import(node: ast.ImportFrom, package_parts: list[str]) -> list[str] | None:
    """Absolute dotted parts for `from ... import`, following Python's relative rules.

    Level 1 is the current package; each extra level climbs one package up.
    """
    module = node.module.split(".") if node.module else []
    if node.level == 0:
        return module
    climb = node.level - 1
    if climb > len(package_parts):
        return None
    base = package_parts[: len(package_parts) - climb]
    return [*base, *module]


def _layer_of(parts: list[str]) -> str | None:
    if len(parts) >= 2 and parts[0] == PACKAGE and parts[1] in LAYERS:
        return parts[1]
    return None


def _imported_layers(tree: ast.AST, package_parts: list[str]) -> Iterator[tuple[int, str]]:
    for node in ast.walk(tree):
        if isinstance(node, ast.Import):
            for alias in node.names:
                layer = _layer_of(alias.name.split("."))
                if layer is not None:
                    yield node.lineno, layer
        elif isinstance(node, ast.ImportFrom):
            target = _resolve_from_import(node, package_parts)
            if target is None:
                continue
            layer = _layer_of(target)
            if layer is not None:
                yield node.lineno, layer
            elif target == [PACKAGE]:
                for alias in node.names:
                    if alias.name in LAYERS:
                        yield node.lineno, alias.name


def check_file(path: Path, source_root: Path = DEFAULT_SOURCE_ROOT) -> list[str]:
    module_parts = _module_parts(path, source_root)
    if module_parts is None:
        return []
    layer = _layer_of(module_parts)
    allowed = ALLOWED_IMPORTS.get(layer or "")
    if allowed is None:
        return []

    tree = ast.parse(path.read_text(encoding="utf-8"), filename=str(path))
    # The last part is the module itself, or "__init__" for a package.
    package_parts = module_parts[:-1]
    violations: list[str] = []
    seen: set[str] = set()
    for lineno, imported in sorted(_imported_layers(tree, package_parts)):
        if imported == layer or imported in allowed or imported in seen:
            continue
        seen.add(imported)
        violations.append(f"{path}:{lineno}: {layer} must not import {PACKAGE}.{imported}")
    return violations


def check_import_boundaries(source_root: Path = DEFAULT_SOURCE_ROOT) -> list[str]:
    violations: list[str] = []
    for path in sorted(source_root.rglob("*.py")):
        violations.extend(check_file(path, source_root))
    return violations


def main() -> None:
    violations = check_import_boundaries()
    if violations:
        raise SystemExit("\n".join(violations))
    print("import boundary checks passed")


if __name__ == "__main__":
    main()

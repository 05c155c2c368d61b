"""Graph export helpers: JSON manifest and Graphviz DOT."""

from __future__ import annotations

import json
from pathlib import Path
from typing import Dict, List, Set

from .models import BinaryAsset, CssAsset, ExternalPackage, ModulesFlatTree, RelativeModule

_SHAPES = {
    RelativeModule: "box",
    CssAsset: "note",
    BinaryAsset: "component",
    ExternalPackage: "ellipse",
}


def export_json(graph: ModulesFlatTree, output_file: Path) -> None:
    payload = {path: node.to_dict() for path, node in graph.items()}
    output_file.write_text(json.dumps(payload, indent=2, sort_keys=True), encoding="utf-8")


def export_dot(graph: ModulesFlatTree, output_file: Path, focus: str = "") -> None:
    selected = _focused_subgraph(graph, focus)

    lines = ["digraph Modules {"]
    lines.append("  rankdir=LR;")

    shapes: Dict[str, str] = {}
    for path in selected:
        for ref in graph[path].imports:
            shapes[ref.key] = _SHAPES[type(ref)]

    for key in sorted(set(selected) | set(shapes)):
        lines.append(f'  "{_esc(key)}" [shape={shapes.get(key, "box")}];')

    for path in sorted(selected):
        for ref in sorted(graph[path].imports, key=lambda r: r.key):
            lines.append(f'  "{_esc(path)}" -> "{_esc(ref.key)}";')

    lines.append("}")
    output_file.write_text("\n".join(lines) + "\n", encoding="utf-8")


def _focused_subgraph(graph: ModulesFlatTree, focus: str) -> List[str]:
    """Modules reachable from *focus* (every module when focus is empty)."""
    if not focus:
        return list(graph)
    if focus not in graph:
        return []

    seen: Set[str] = set()
    stack = [focus]
    while stack:
        path = stack.pop()
        if path in seen:
            continue
        seen.add(path)
        for ref in graph[path].imports:
            if ref.key in graph:
                stack.append(ref.key)
    return [path for path in graph if path in seen]


def _esc(value: str) -> str:
    return value.replace("\\", "\\\\").replace('"', '\\"')

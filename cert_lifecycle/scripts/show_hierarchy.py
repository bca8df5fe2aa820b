#!/usr/bin/env python3
"""Print the reconstructed certificate trust hierarchy."""

import argparse
import json
import sys
from pathlib import Path

from cert_lifecycle.lib.config import EngineSettings
from cert_lifecycle.lib.discovery import discover_certificates
from cert_lifecycle.lib.hierarchy import build_hierarchy
from cert_lifecycle.lib.logging_config import LOGGER
from cert_lifecycle.lib.models import HierarchyNode
from cert_lifecycle.lib.toolkit import CAToolkit


def render_tree(roots: list[HierarchyNode]) -> list[str]:
    """Render the forest as indented lines, one per node."""
    lines: list[str] = []
    for root in roots:
        for node, depth in root.walk():
            if node.record is None:
                lines.append(f"{'  ' * depth}[{node.label}]")
                continue
            expires = node.record.valid_to.date().isoformat() if node.record.valid_to else "?"
            lines.append(
                f"{'  ' * depth}{node.label} ({node.record.cert_class.value}, expires {expires})"
            )
    return lines


def to_json(node: HierarchyNode) -> dict[str, object]:
    return {
        "label": node.label,
        "certificate": node.record.to_dict() if node.record else None,
        "children": [to_json(child) for child in node.children],
    }


def main() -> int:
    """Discover certificates and print their hierarchy.

    Returns:
        Exit code (0 for success, 1 for failure)
    """
    settings = EngineSettings.from_env()
    parser = argparse.ArgumentParser(description="Show the certificate trust hierarchy")
    parser.add_argument("--certs-dir", type=Path, default=settings.certs_dir)
    parser.add_argument("--json", action="store_true", help="Print JSON instead of a tree")
    args = parser.parse_args()

    try:
        records = discover_certificates(args.certs_dir, CAToolkit())
        roots = build_hierarchy(records)
        if args.json:
            print(json.dumps([to_json(root) for root in roots], indent=2))
        else:
            for line in render_tree(roots):
                print(line)
        return 0

    except Exception as e:
        LOGGER.error("Failed to build hierarchy: %s", e)
        return 1


if __name__ == "__main__":
    sys.exit(main())

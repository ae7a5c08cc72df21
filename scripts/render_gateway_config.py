#!/usr/bin/env python3
"""Render the traefik gateway fragment of a WorkspaceRouting manifest."""

from __future__ import annotations

import argparse
import logging
import sys
from pathlib import Path
from typing import Any, Dict, Iterator

import yaml

REPO_ROOT = Path(__file__).resolve().parents[1]
SRC_PATH = REPO_ROOT / "src"
if str(SRC_PATH) not in sys.path:
    sys.path.insert(0, str(SRC_PATH))

from devworkspace_che.defaults import workspace_config_key  # noqa: E402
from devworkspace_che.endpoints import resolve_exposed_endpoints  # noqa: E402
from devworkspace_che.traefik import GatewayConfigSynthesizer  # noqa: E402
from workspace_routing.model import WORKSPACE_ROUTING_KIND, WorkspaceRouting  # noqa: E402


LOG = logging.getLogger(__name__)


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description=__doc__)
    parser.add_argument(
        "manifest",
        type=Path,
        help="YAML file holding one or more WorkspaceRouting documents",
    )
    parser.add_argument(
        "--host",
        default="",
        help="Gateway host used to print the public endpoint URLs",
    )
    parser.add_argument(
        "--verbose",
        action="store_true",
        help="Enable verbose logging",
    )
    return parser.parse_args()


def load_routings(path: Path) -> Iterator[Dict[str, Any]]:
    with path.open() as fh:
        for document in yaml.safe_load_all(fh):
            if not isinstance(document, dict):
                continue
            if document.get("kind") != WORKSPACE_ROUTING_KIND:
                LOG.debug("Skipping %s document", document.get("kind"))
                continue
            yield document


def main() -> None:
    args = parse_args()
    logging.basicConfig(level=logging.DEBUG if args.verbose else logging.INFO)

    synthesizer = GatewayConfigSynthesizer()
    rendered = 0
    for document in load_routings(args.manifest):
        routing = WorkspaceRouting.from_object(document)
        if not routing.workspace_id:
            LOG.warning("Routing %s has no workspace id, skipping", routing.key)
            continue

        print(f"# {workspace_config_key(routing.workspace_id)} ({routing.key})")
        print(synthesizer.render_workspace(routing), end="")

        if args.host:
            exposed = resolve_exposed_endpoints(args.host, routing.workspace_id, routing.endpoints)
            for component, endpoints in exposed.items():
                for endpoint in endpoints:
                    print(f"# {component}/{endpoint.name}: {endpoint.url}")
        rendered += 1

    if not rendered:
        LOG.warning("No WorkspaceRouting found in %s", args.manifest)


if __name__ == "__main__":
    main()

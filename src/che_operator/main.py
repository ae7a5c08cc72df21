"""Entry point for the Che routing operator."""

from __future__ import annotations

import argparse
import logging
import os
import sys
from pathlib import Path

import kopf

from .config import load_config
from .handlers import build_context, operator_settings  # importing registers the handlers
from .kube import KubernetesObjectStore, load_api_client
from .options import load_gateway_settings

LOG = logging.getLogger(__name__)


def _setup_logging(verbose: bool) -> None:
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(asctime)s | %(levelname)-8s | %(name)s | %(message)s",
    )


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(description="Run the Che workspace routing operator")
    parser.add_argument(
        "--config",
        type=Path,
        default=None,
        help="Path to the operator configuration file",
    )
    parser.add_argument(
        "--gateway-config",
        type=Path,
        default=None,
        help="Path to an INI file overriding the [gateway] options",
    )
    parser.add_argument(
        "--verbose",
        action="store_true",
        help="Enable debug logging",
    )

    args = parser.parse_args(argv)
    _setup_logging(args.verbose)

    config = load_config(args.config).operator
    settings = load_gateway_settings(args.gateway_config)

    if config.kubeconfig:
        # kopf logs in through the kubernetes client, which reads KUBECONFIG.
        os.environ["KUBECONFIG"] = str(config.kubeconfig)
    store = KubernetesObjectStore(load_api_client(config.kubeconfig))
    context = build_context(store, settings, retry_delay=config.retry_delay)

    LOG.info(
        "Starting che routing operator (namespace=%s, workers=%d)",
        config.namespace or "<all>",
        config.workers,
    )
    kopf.run(
        standalone=True,
        clusterwide=config.namespace is None,
        namespaces=[config.namespace] if config.namespace else [],
        settings=operator_settings(config.workers),
        memo=kopf.Memo(context=context),
    )

    LOG.info("che routing operator stopped")
    return 0


if __name__ == "__main__":  # pragma: no cover
    sys.exit(main())

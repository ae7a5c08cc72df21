"""YAML configuration loader for the routing operator."""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

import yaml


@dataclass
class OperatorSettings:
    workers: int = 2
    namespace: Optional[str] = None
    kubeconfig: Optional[Path] = None
    retry_delay: float = 5.0


@dataclass
class OperatorConfig:
    operator: OperatorSettings = field(default_factory=OperatorSettings)


def _parse_operator(section: dict) -> OperatorSettings:
    workers = int(section.get("workers", 2))
    if workers < 1:
        raise ValueError("'operator.workers' must be at least 1")

    retry_delay = float(section.get("retry_delay", 5.0))
    if retry_delay <= 0:
        raise ValueError("'operator.retry_delay' must be positive")

    kubeconfig = section.get("kubeconfig")
    namespace = section.get("namespace")
    return OperatorSettings(
        workers=workers,
        namespace=str(namespace) if namespace else None,
        kubeconfig=Path(kubeconfig) if kubeconfig else None,
        retry_delay=retry_delay,
    )


def load_config(path: Optional[Path]) -> OperatorConfig:
    if path is None:
        return OperatorConfig()

    data = yaml.safe_load(Path(path).read_text())
    if data is None:
        return OperatorConfig()
    if not isinstance(data, dict):
        raise ValueError("Operator configuration must be a mapping")

    section = data.get("operator", {})
    if not isinstance(section, dict):
        raise ValueError("'operator' section must be a mapping")

    return OperatorConfig(operator=_parse_operator(section))

"""
approval_config -- single public entrypoint for workflow configuration.

Responsibility:
    Provides the ONLY way to obtain configuration at runtime through
    ``get_active_config()``.  Returns a frozen ``WorkflowConfig`` that the
    caller holds for the life of the process and injects into the
    permission model, the workflow engine and the escalation scheduler.

Architecture position:
    Configuration -- YAML-driven policy tables.  Sits above
    ``approval_kernel.domain`` and below ``approval_services`` /
    ``approval_batch``.  The kernel services receive the config object by
    injection and never read files themselves.

Failure modes:
    - ``FileNotFoundError`` -- the configuration file does not exist.
    - ``yaml.YAMLError`` -- the file is not valid YAML.
    - ``ConfigurationError`` -- structural validation failures.

Audit relevance:
    Every successful ``get_active_config()`` call emits an
    ``APPROVAL_CONFIG_TRACE`` log entry with the version, checksum, policy
    count and role count, tying workflow decisions to the exact
    configuration that governed them.
"""

from __future__ import annotations

import logging
from pathlib import Path

from approval_config.loader import (
    ConfigurationError,
    load_workflow_config,
    parse_workflow_config,
)
from approval_config.schema import (
    AmountBracket,
    ApprovalPolicy,
    DiscountLimit,
    EscalationPolicy,
    WorkflowConfig,
)

_logger = logging.getLogger("approval_kernel.config")

_DEFAULT_CONFIG_FILE = Path(__file__).parent / "sets" / "default.yaml"


def get_active_config(path: Path | str | None = None) -> WorkflowConfig:
    """The ONLY public configuration entrypoint.

    Args:
        path: Override path to a workflow YAML file.  Defaults to
            ``approval_config/sets/default.yaml``.

    Returns:
        The frozen ``WorkflowConfig``.  Not cached; load once at startup.

    Raises:
        FileNotFoundError: If the file does not exist.
        ConfigurationError: If the content fails validation.
    """
    config_path = Path(path) if path is not None else _DEFAULT_CONFIG_FILE
    config = load_workflow_config(config_path)

    _logger.info(
        "APPROVAL_CONFIG_TRACE",
        extra={
            "trace_type": "APPROVAL_CONFIG_TRACE",
            "config_path": str(config_path),
            "config_version": config.version,
            "checksum": config.checksum,
            "policy_count": len(config.policies),
            "role_count": len(config.roles),
        },
    )
    return config


__all__ = [
    "AmountBracket",
    "ApprovalPolicy",
    "ConfigurationError",
    "DiscountLimit",
    "EscalationPolicy",
    "WorkflowConfig",
    "get_active_config",
    "parse_workflow_config",
]

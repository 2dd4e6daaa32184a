"""Production guard — refuses non-reproducible releases in production.

Runs once before a pipeline starts and fails hard (``ProductionConfigError``)
if any constraint is violated. Other code does not scatter
``if is_production`` checks.
"""

from __future__ import annotations

import logging

from slimship.config import SlimshipSettings
from slimship.models.definition import PipelineDefinition

logger = logging.getLogger(__name__)


class ProductionConfigError(RuntimeError):
    """Raised when production configuration constraints are violated.

    The process should exit; this error must not be caught and ignored.
    """


def find_floating_images(definition: PipelineDefinition) -> list[str]:
    """Return the references of stage base images whose tags float."""
    return [
        image.reference
        for image in (definition.build.toolchain.image, definition.release.base)
        if image.is_floating
    ]


def enforce_production_constraints(
    settings: SlimshipSettings, definition: PipelineDefinition
) -> None:
    """Validate production-critical constraints.

    Constraints enforced in ``environment=production``
    --------------------------------------------------
    1. Debug mode must be disabled.
    2. Toolchain and base images must be pinned to non-floating tags,
       unless ``allow_floating_tags`` is set.

    Outside production, floating tags only produce a warning.

    Raises
    ------
    ProductionConfigError
        If any production constraint is violated.
    """
    floating = find_floating_images(definition)

    if not settings.is_production:
        for reference in floating:
            logger.warning(
                "Image %s uses a floating tag; rebuilds may not be reproducible.",
                reference,
            )
        return

    violations: list[str] = []

    if settings.debug:
        violations.append(
            "debug=True is not allowed in production. Set SLIMSHIP_DEBUG=false."
        )

    if floating and not settings.allow_floating_tags:
        for reference in floating:
            violations.append(
                f"Image {reference} uses a floating tag. Pin a release tag or "
                "set SLIMSHIP_ALLOW_FLOATING_TAGS=true."
            )

    if violations:
        msg = "Production configuration guard failed.\n" + "\n".join(
            f"  - {v}" for v in violations
        )
        logger.critical(msg)
        raise ProductionConfigError(msg)

    logger.info("Production configuration guard passed.")

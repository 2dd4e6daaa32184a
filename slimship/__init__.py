"""slimship: two-stage build and minimal runtime image pipeline.

Compiles a source tree inside a full toolchain image, then ships only the
resulting executable on a minimal base with an exact runtime dependency
set, baked-in process defaults, and a single entry point:

  - Build Stage: toolchain provisioning, verbatim source copy, release build
  - Release Stage: minimal base, declared packages, artifact copy, env, entry point
  - Post-build verification of the runtime image before it is tagged
  - Hash-chained run ledger, content-addressed artifact store, Rich monitor
"""

__version__ = "0.1.0"
__description__ = "Two-stage build and minimal runtime image pipeline"

from slimship.core.orchestrator import Orchestrator
from slimship.monitor.projection import MonitorProjection
from slimship.cli.app import app as cli

__all__ = ["Orchestrator", "MonitorProjection", "cli", "__version__"]

"""Tierforge: tiered deployment pipeline orchestration.

Maps branch pushes to feature, release, and production pipelines; builds,
scans and multi-tags artifacts; gates production on a durable human
approval; and drives rolling deploys with an automatic rollback circuit
breaker.  Every stage transition is recorded in a hash-chained ledger and
announced through pluggable notification sinks.
"""

__version__ = "0.1.0"
__description__ = "Tiered deployment pipeline orchestration engine"

from tierforge.core.orchestrator import Orchestrator
from tierforge.monitor.projection import MonitorProjection
from tierforge.cli.app import app as cli

__all__ = ["Orchestrator", "MonitorProjection", "cli", "__version__"]

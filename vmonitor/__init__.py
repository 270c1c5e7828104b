"""Version drift monitor for Nomad workloads.

``vmonitor`` periodically compares the container images declared by running
Nomad jobs against the tags published in their registries and exposes the
result as Prometheus metrics.
"""

from __future__ import annotations

__version__ = "0.3.0"

__all__ = ["__version__"]

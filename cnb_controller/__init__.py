"""CNB Build Controller - reconcile CNBBuild resources into Knative builds.

This package turns CNBBuild resources into Knative-style Build resources,
mirrors their progress back, and harvests built image metadata from the
container registry once a build succeeds.
"""

__version__ = "0.1.0"
__all__ = ["__version__"]

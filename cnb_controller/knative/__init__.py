"""Knative Build resource module.

Models and store for the Knative builds that execute CNBBuilds.
"""

from cnb_controller.knative.schema import KnativeBuild

__all__ = ["KnativeBuild"]

"""Reconcilers for controller-managed resources."""

from cnb_controller.reconciler.cnbbuild import Reconciler

__all__ = ["Reconciler"]

"""Maintenance workflows: convergence, sequencing and the controller."""

from maintenance.controller import MaintenanceController
from maintenance.convergence import ConvergenceWaiter
from maintenance.sequencers import RestoreSequencer, ShutdownSequencer

__all__ = ["ConvergenceWaiter", "MaintenanceController", "RestoreSequencer", "ShutdownSequencer"]

"""Docker Swarm service discovery component."""

from .discovery import DockerServiceDiscovery
from .models import DiscoveredService, ReconcileResult
from .reconciler import DiscoveryReconciler

__all__ = ['DiscoveredService', 'DiscoveryReconciler', 'DockerServiceDiscovery', 'ReconcileResult']

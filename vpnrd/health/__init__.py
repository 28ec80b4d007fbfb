"""Egress health probing."""

from .health_probe import HealthProbe, HealthResult

__all__ = ['HealthProbe', 'HealthResult']

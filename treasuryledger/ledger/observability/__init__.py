# MIT License
# Copyright (c) 2025 Hashborn

"""
Observability Module

Provides Prometheus metrics for the treasury ledger.
"""

from .metrics import metrics_registry, update_metrics, attach

__all__ = ['metrics_registry', 'update_metrics', 'attach']

"""Collectors package for HSM group metrics.

Each collector module provides fetch and generate_metrics functions that
can be composed with the HsmCollector class.
"""

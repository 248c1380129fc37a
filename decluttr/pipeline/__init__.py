"""Batch classification and stage-flow aggregation."""

"""Classification: taxonomy, normalization and orchestration."""

"""Gmail mail-source collaborator and incremental sync."""

"""In-process storage: memo cache and mailbox repository."""

"""HTTP recovery surface for the migration guard."""

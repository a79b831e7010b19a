"""viaticos.cli: maintenance commands (repair, audit, reconcile)."""

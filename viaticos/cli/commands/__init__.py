"""
viaticos.cli.commands

One module per sub-command, each exposing register(sub).
"""
__all__ = [
    "repair_cmd",
    "audit_cmd",
    "reconcile_cmd",
]

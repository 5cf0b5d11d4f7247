"""Tierforge execution monitor — read-only projection over the Run Ledger.

The monitor never keeps its own state.  Every call re-reads the ledger and
the execution store.

Modules
-------
projection
    ``MonitorProjection`` produces frozen ``ExecutionSnapshot`` models.
renderer
    ``MonitorRenderer`` turns snapshots into Rich renderables.
"""

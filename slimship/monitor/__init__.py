"""slimship monitor — pure read-only projection over the Run Ledger.

Modules
-------
projection
    ``MonitorProjection`` reads the ledger and produces ``MonitorSnapshot``
    Pydantic models, a frozen point-in-time view of a run.
renderer
    ``MonitorRenderer`` turns ``MonitorSnapshot`` into Rich renderables.
"""

"""
Tenant-aware Job Queue

A persistent job queue that leases deferred work to workers and activates the
owning tenant's database connection before each job runs. Delivery is
at-least-once; handlers are expected to be idempotent.
"""

__version__ = "1.0.0"

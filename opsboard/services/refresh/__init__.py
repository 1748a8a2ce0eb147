"""
Refresh pipeline shared by status, ranking and companies.

Modules:
  backoff       : Failure streak bookkeeping and delay policy.
  single_flight : RefreshCoordinator (one fetch per key, stale fallback).
  scheduler     : Periodic driver for coordinators and maintenance jobs.
"""

"""Reconcile workers, the claim work queue and leader election."""

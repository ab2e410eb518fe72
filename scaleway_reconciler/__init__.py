"""Reconcile declared Scaleway compute resources against the provider API."""

"""Gatehouse: access control and lifecycle reconciliation for residential societies."""

"""LTCF Bridge - CIHI IRRS submission and reconciliation."""

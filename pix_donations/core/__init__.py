"""Core donation pipeline: charges, reconciliation, notifications, storage."""

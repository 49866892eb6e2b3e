"""Batch sync: hash, check, upload, report."""

"""Data models for Rhizonote Sync."""

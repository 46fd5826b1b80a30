"""App configuration snapshots.

This module handles:
- Validation of configuration snapshots
- Loading snapshots from YAML/JSON files
"""

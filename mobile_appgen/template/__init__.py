"""Template customization.

This module handles:
- Substituting per-app values into a workspace copy of the template
- Staging icon and splash screen assets
"""

"""Build job records.

This module handles:
- Job, log entry and artifact persistence
- The job status state machine and job logger
- Submission and status query schemas
"""

from mobile_appgen.jobs.models import BuildJob, BuildLogEntry, StoredArtifact

__all__ = ["BuildJob", "BuildLogEntry", "StoredArtifact"]

# Submodules (schema, state, store, service) are imported explicitly

"""Background maintenance tasks."""

from authkit.tasks.maintenance import ExpirySweeper, cleanup_expired

__all__ = ["ExpirySweeper", "cleanup_expired"]

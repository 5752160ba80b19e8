"""Error taxonomy of the sync engine.

- TransientSyncError: network unreachable, timeout, 5xx. Retried with backoff.
- AuthorizationError: 401/403. Sync halts until the credential is replaced.
- ValidationRejectedError: the remote store refused one mutation (400/422).
- LocalStoreError: the local durable store failed to persist a write.

Conflicts are not errors; they are resolved by last-write-wins and reported.
"""

from __future__ import annotations


class SyncError(RuntimeError):
    pass


class TransientSyncError(SyncError):
    pass


class AuthorizationError(SyncError):
    pass


class ValidationRejectedError(SyncError):
    def __init__(self, message: str, *, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class LocalStoreError(SyncError):
    pass


class IdentityConflictError(LocalStoreError):
    """Two local records would carry the same non-null remote id."""


class NoteNotFoundError(LookupError):
    pass

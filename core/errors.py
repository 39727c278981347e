"""
core/errors.py -- Failure signals shared by every store.

Stores surface exactly three outcomes besides success:
  not found             -- return None (lookups) or False (update/delete)
  UniquenessViolation   -- a UNIQUE constraint rejected the write
  StoreUnavailable      -- the database could not be reached or used

Anything else is a programming error and propagates unmodified.

Layer rule: core/ is the kernel. No imports from api/, auth/, or catalog/.
"""

from __future__ import annotations


class StoreUnavailable(Exception):
    """Transient infrastructure failure (connection refused, locked DB, disk I/O).

    Not retried by the core. The API layer logs it and answers 503.
    """


class UniquenessViolation(Exception):
    """A write conflicted with a UNIQUE constraint.

    fields lists the logical field names that already hold the submitted value,
    in the order the caller should report them. It may be empty when the
    conflicting column cannot be determined.
    """

    def __init__(self, fields: tuple[str, ...] = ()) -> None:
        self.fields = tuple(fields)
        super().__init__(f"uniqueness violation on {', '.join(self.fields) or 'unknown field'}")

"""Error taxonomy for the extraction run.

Two families:
  - run-fatal: the shared session is unusable, the orchestrator stops and
    returns whatever it aggregated so far.
  - tenant-local: recorded against one tenant, the run continues.

Each class carries a stable ``code`` that ends up in the failure report.
"""


class ExtractionError(Exception):
    """Base class for every classified failure."""

    code = "ExtractionError"
    fatal_for_run = False


# ---------------------------------------------------------------------------
# Run-fatal
# ---------------------------------------------------------------------------


class SessionMissing(ExtractionError):
    """No credentials at all. The run never starts."""

    code = "SessionMissing"
    fatal_for_run = True


class SessionInvalid(ExtractionError):
    """The remote application rejected the session's authorization."""

    code = "SessionInvalid"
    fatal_for_run = True


class CredentialRefreshFailed(ExtractionError):
    """Anti-forgery token issuance kept failing after all retries."""

    code = "CredentialRefreshFailed"
    fatal_for_run = True


# ---------------------------------------------------------------------------
# Tenant-local
# ---------------------------------------------------------------------------


class TenantLocalError(ExtractionError):
    """A failure that only affects the tenant currently being processed."""

    code = "TenantLocalError"

    def __init__(self, message: str, tenant_id: str | None = None) -> None:
        super().__init__(message)
        self.tenant_id = tenant_id


class TenantSwitchFailed(TenantLocalError):
    """The remote switch call failed."""

    code = "TenantSwitchFailed"


class VerificationMismatch(TenantSwitchFailed):
    """After switching, the session reported a different (or no) tenant."""

    code = "VerificationMismatch"


class QueryFatalError(TenantLocalError):
    """The response was structurally unusable. Not retried."""

    code = "QueryFatalError"


class QueryTransientError(TenantLocalError):
    """Timeouts, 5xx, connection resets: retried, then surfaced as this."""

    code = "QueryTransientError"


class PaginationInconsistency(TenantLocalError):
    """A listing cursor failed to advance or the page cap was exceeded."""

    code = "PaginationInconsistency"

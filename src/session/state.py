"""In-memory session: cookies, anti-forgery token, bound tenant.

Only CredentialRefresher (token) and TenantContextSwitcher (binding) mutate
a SessionState during a run.
"""

from pydantic import BaseModel, ConfigDict, Field


class SessionState(BaseModel):
    """One authenticated identity.

    Serialized field names (``csrfToken``, ``orgIds``) match the session file
    written by the login flow.
    """

    model_config = ConfigDict(populate_by_name=True, validate_assignment=True)

    cookies: dict[str, str] = Field(default_factory=dict)
    csrf_token: str | None = Field(default=None, alias="csrfToken")
    tenant_ids: list[str] = Field(default_factory=list, alias="orgIds")
    bound_tenant_id: str | None = Field(default=None, exclude=True)

    def has_auth_cookie(self, names: list[str]) -> bool:
        return any(self.cookies.get(name) for name in names)

    def cookie_header(self) -> str:
        return "; ".join(f"{k}={v}" for k, v in self.cookies.items())

    def invalidate_token(self) -> None:
        self.csrf_token = None

    def update_cookies(self, cookies: dict[str, str]) -> None:
        """Merge cookies set by the remote (e.g. after a tenant switch)."""
        merged = dict(self.cookies)
        merged.update({k: v for k, v in cookies.items() if k and v})
        self.cookies = merged

    def remember_tenants(self, tenant_ids: list[str]) -> None:
        known = list(self.tenant_ids)
        for tenant_id in tenant_ids:
            if tenant_id not in known:
                known.append(tenant_id)
        self.tenant_ids = known

"""Pay model data model.

A pay model binds one user to a billing account and, through its flags, to
the backend that hosts the user's workspaces.  Field aliases are the
attribute names used by the pay-model table and by the HTTP API.
"""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field

from hatchway.launcher.models.enums import BackendKind

ACTIVE_REQUEST_STATUSES = ("active", "above limit")


class PayModel(BaseModel):
    """One pay-model record (DynamoDB row or config entry)."""

    model_config = ConfigDict(populate_by_name=True, from_attributes=True)

    id: str = Field(default="", alias="bmh_workspace_id")
    name: str = Field(default="", alias="workspace_type")
    user: str = Field(default="", alias="user_id")
    aws_account_id: str = Field(default="", alias="account_id")
    status: str = Field(default="", alias="request_status", description="Request lifecycle, e.g. 'active'")
    local: bool = False
    region: str = ""
    ecs: bool = False
    subnet: int = 0
    hard_limit: float = Field(default=0, alias="hard-limit")
    soft_limit: float = Field(default=0, alias="soft-limit")
    total_usage: float = Field(default=0, alias="total-usage")
    current_pay_model: bool = False

    @property
    def backend_kind(self) -> BackendKind:
        if self.local:
            return BackendKind.LOCAL
        if self.ecs:
            return BackendKind.MANAGED_CONTAINER
        return BackendKind.EXTERNAL

    @property
    def is_active(self) -> bool:
        return self.status == "active"

    @property
    def admin_role_arn(self) -> str:
        """Role assumed in the pay model's account for cross-account calls."""
        return f"arn:aws:iam::{self.aws_account_id}:role/csoc_adminvm"


class AllPayModels(BaseModel):
    """Every active pay model of a user plus the current selection."""

    current_pay_model: PayModel | None = None
    all_pay_models: list[PayModel] = Field(default_factory=list)

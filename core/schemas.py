from datetime import datetime, timezone
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationInfo, field_validator

from .network import validate_port


class DeployRequest(BaseModel):
    """Body of ``POST /doxy``. Only ``deploymentName`` is mandatory."""

    model_config = ConfigDict(populate_by_name=True)

    branch_name: str = Field("master", alias="branchName")
    subdirectory: str = "."
    dockerfile: str = "Dockerfile"
    deployment_name: str = Field(..., alias="deploymentName")
    http_port: int = Field(80, alias="httpPort")
    pull_origin: bool = Field(False, alias="pullOrigin")

    @field_validator("branch_name", "subdirectory", "dockerfile", "http_port", "pull_origin", mode="before")
    @classmethod
    def _fill_defaults(cls, value: Any, info: ValidationInfo) -> Any:
        # empty values on the wire mean "use the default"
        if isinstance(value, str):
            value = value.strip()
        if value is None or value == "" or (info.field_name == "http_port" and value == 0):
            return cls.model_fields[info.field_name].default
        return value

    @field_validator("deployment_name", mode="before")
    @classmethod
    def _require_name(cls, value: Any) -> Any:
        if value is None or (isinstance(value, str) and not value.strip()):
            raise ValueError("No deployment name specified.")
        return value.strip() if isinstance(value, str) else value

    @field_validator("branch_name")
    @classmethod
    def _safe_branch(cls, value: str) -> str:
        value = value.strip()
        if value.startswith("-"):
            raise ValueError(f"Invalid branch name: {value}")
        return value

    @field_validator("http_port")
    @classmethod
    def _valid_port(cls, value: int) -> int:
        if validate_port(value) is None:
            raise ValueError(f"Invalid HTTP port: {value}")
        return value


class DeploymentRecord(BaseModel):
    name: str
    index: int
    host_port: int
    image_tag: str
    container_id: Optional[str] = None
    branch_name: str = "master"
    commit: Optional[str] = None
    deployed_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

from pydantic import BaseModel, ConfigDict, Field


class ProjectRules(BaseModel):
    slug: str
    rules_version: str

class EmailRules(BaseModel):
    max_length: int = Field(default=254, ge=6, le=320)
    blocked_domains: list[str] = Field(default_factory=list)

class ConfirmationRules(BaseModel):
    base_url: str = "http://localhost:8000"
    path: str = "/confirm"
    token_ttl_hours: int = Field(default=24, ge=1)
    require_token: bool = False

class QueueRules(BaseModel):
    visibility_timeout_seconds: int = Field(default=30, ge=1)
    max_attempts: int = Field(default=5, ge=1)
    poll_interval_seconds: float = Field(default=5.0, gt=0)
    batch_size: int = Field(default=10, ge=1, le=100)

class OpsRules(BaseModel):
    data_dir_required: bool = True
    required_env: list[str] = Field(default_factory=list)

class Rules(BaseModel):
    project: ProjectRules
    email: EmailRules = Field(default_factory=EmailRules)
    confirmation: ConfirmationRules = Field(default_factory=ConfirmationRules)
    queue: QueueRules = Field(default_factory=QueueRules)
    ops: OpsRules = Field(default_factory=OpsRules)

    model_config = ConfigDict(extra="forbid")

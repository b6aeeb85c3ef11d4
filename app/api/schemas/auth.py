from pydantic import BaseModel, Field


class UnifiedPrincipal(BaseModel):
    user_id: str = Field(..., description="Canonical user UUID as string")
    email: str = Field(default="", description="User email associated with the principal")
    display_name: str = Field(default="", description="User-facing display name")

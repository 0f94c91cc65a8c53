from __future__ import annotations

from typing import Literal

from pydantic import BaseModel, Field


class ValidationIssue(BaseModel):
    field: str
    level: Literal["warn", "fail"]
    message: str


class ValidationResult(BaseModel):
    status: Literal["ok", "warn", "fail"] = "ok"
    issues: list[ValidationIssue] = Field(default_factory=list)

    @property
    def failed(self) -> bool:
        return self.status == "fail"

    def describe(self) -> str:
        return "; ".join(issue.message for issue in self.issues if issue.level == "fail")

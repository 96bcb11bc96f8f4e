from __future__ import annotations

from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field

from packforge.core.context import BuildConfiguration


class DetectRequest(BaseModel):
    source_path: str
    configuration: BuildConfiguration = Field(default_factory=BuildConfiguration)


class BuildRequest(BaseModel):
    image_ref: str = Field(..., min_length=1)
    source_path: str
    configuration: BuildConfiguration = Field(default_factory=BuildConfiguration)
    persist: bool = True


class DetectResponse(BaseModel):
    plan_id: str
    group_index: int
    modules: List[Dict[str, Any]]
    skipped: List[Dict[str, Any]]


class BuildResponse(BaseModel):
    descriptor: Dict[str, Any]
    plan: Dict[str, Any]
    log: List[str]
    warnings: List[Dict[str, Any]]
    cache_hits: List[str]


class BuildCompareResponse(BaseModel):
    kind: str
    image_a: Optional[str]
    image_b: Optional[str]
    identical: bool
    summary: Dict[str, int]
    added: List[Dict[str, Any]]
    removed: List[Dict[str, Any]]
    changed: List[Dict[str, Any]]
    plan_changed: bool
    stack_changed: bool
    env_changed: List[str]

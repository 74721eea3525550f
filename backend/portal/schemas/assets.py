from __future__ import annotations
from pydantic import BaseModel, Field
from uuid import UUID


class AssetPublic(BaseModel):
    url: str
    name: str                   # display name, token prefix stripped
    key: str | None = None      # only known for assets created in this request


class UploadFailurePublic(BaseModel):
    name: str
    reason: str
    retryable: bool = False


class ChallengeFiles(BaseModel):
    challenge_id: UUID
    files: list[AssetPublic] = Field(default_factory=list)


class UploadResponse(ChallengeFiles):
    uploaded: list[AssetPublic] = Field(default_factory=list)
    failed: list[UploadFailurePublic] = Field(default_factory=list)


class RemoveResponse(ChallengeFiles):
    removed: str
    key: str | None = None
    deleted_from_storage: bool = False

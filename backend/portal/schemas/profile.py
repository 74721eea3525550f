from __future__ import annotations
from pydantic import BaseModel, Field
from uuid import UUID
from datetime import datetime


class ProfilePublic(BaseModel):
    user_id: UUID
    username: str
    display_name: str | None = None
    avatar_url: str | None = None
    bio: str | None = None
    country: str | None = None
    team_id: UUID | None = None
    total_points: int = 0
    challenges_solved: int = 0
    rank: int | None = None
    created_at: datetime


class TeamPublic(BaseModel):
    id: UUID
    name: str
    avatar_url: str | None = None


class SolvedChallengePublic(BaseModel):
    id: UUID
    title: str
    category: str
    difficulty: str | None = None
    points: int
    solved_at: datetime
    is_first_blood: bool


class ProfileStatsPublic(BaseModel):
    total_points: int
    solved_count: int
    rank: int | None = None
    first_blood_count: int
    completion_percent: int
    category_breakdown: dict[str, int] = Field(default_factory=dict)
    solved_challenges: list[SolvedChallengePublic] = Field(default_factory=list)
    unresolved_challenge_ids: list[UUID] = Field(default_factory=list)


class ProfilePage(BaseModel):
    profile: ProfilePublic
    team: TeamPublic | None = None
    stats: ProfileStatsPublic
    is_own_profile: bool
    podium: bool = False  # rank 1-3


class ProfileUpdate(BaseModel):
    display_name: str | None = Field(default=None, max_length=64)
    bio: str | None = Field(default=None, max_length=2000)
    country: str | None = Field(default=None, max_length=64)

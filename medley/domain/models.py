from __future__ import annotations

from datetime import datetime
from typing import Any, List, Mapping, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

from medley.domain.enums import JobStatus
from medley.domain.titles import parse_title, song_label

SONGS_PER_JOB = 3
MAX_TITLE_LENGTH = 200


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# -----------------------------------------------------------------------------
# Catalog
# -----------------------------------------------------------------------------

class Song(BaseModel):
    id: str
    title: str
    artist: str
    midi_key: str
    token_key: Optional[str] = None
    base_title: str = ""

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> "Song":
        title = str(row["title"])
        return cls(
            id=str(row["id"]),
            title=title,
            artist=str(row["artist"]),
            midi_key=str(row["midi_key"]),
            token_key=row.get("token_key"),
            base_title=str(row.get("base_title") or parse_title(title).base_title),
        )

    @property
    def label(self) -> str:
        return song_label(self.title, self.artist)


class SongItem(BaseModel):
    id: str
    label: str
    title: str
    artist: str

    @classmethod
    def from_song(cls, song: Song) -> "SongItem":
        return cls(id=song.id, label=song.label, title=song.title, artist=song.artist)


class SongListOut(BaseModel):
    songs: List[SongItem] = Field(default_factory=list)
    total: int = 0


# -----------------------------------------------------------------------------
# Jobs
# -----------------------------------------------------------------------------

class JobSnapshot(CamelModel):
    """
    Projection of a job row. Stored as JSON in the cache under job:<id> and
    returned as-is by GET /status/{jobId}.
    """

    job_id: str
    status: JobStatus
    progress: int = Field(ge=0, le=100)
    songs: List[str]
    created_at: datetime
    completed_at: Optional[datetime] = None
    output_file_id: Optional[str] = None
    error: Optional[str] = None

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> "JobSnapshot":
        return cls(
            job_id=str(row["job_id"]),
            status=JobStatus(row["status"]),
            progress=int(row.get("progress") or 0),
            songs=list(row.get("songs") or []),
            created_at=row["created_at"],
            completed_at=row.get("completed_at"),
            output_file_id=row.get("output_file_id"),
            error=row.get("error_message"),
        )

    def status_fields(self) -> tuple:
        return (self.status, self.progress, self.output_file_id, self.error)


class GenerateIn(BaseModel):
    songs: List[str]

    @field_validator("songs")
    @classmethod
    def _three_titles(cls, v: List[str]) -> List[str]:
        if len(v) != SONGS_PER_JOB:
            raise ValueError(f"Exactly {SONGS_PER_JOB} songs are required")
        out: List[str] = []
        for s in v:
            s = (s or "").strip()
            if not s:
                raise ValueError("Song names cannot be empty")
            if len(s) > MAX_TITLE_LENGTH:
                raise ValueError(f"Song names must be at most {MAX_TITLE_LENGTH} characters")
            out.append(s)
        return out


class GenerateOut(CamelModel):
    job_id: str
    status: JobStatus = JobStatus.pending
    message: str = "Music generation started successfully"


class Pagination(BaseModel):
    limit: int
    offset: int
    total: int


class JobListOut(BaseModel):
    jobs: List[JobSnapshot] = Field(default_factory=list)
    pagination: Pagination


class CancelOut(CamelModel):
    message: str = "Job cancelled successfully"
    job_id: str

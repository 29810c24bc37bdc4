from __future__ import annotations

from datetime import datetime
from typing import List

from pydantic import BaseModel, Field


UNKNOWN_ARTIST = "Unknown Artist"


def utc_now_iso() -> str:
    return datetime.utcnow().isoformat() + "Z"


class Track(BaseModel):
    # Assigned by the store on insert; empty until then.
    id: str = ""
    title: str = ""
    artist: str = UNKNOWN_ARTIST
    path: str  # absolute, normalized

    def public_dict(self) -> dict:
        """Listing payload for the web client (which keys tracks by `_id`)."""
        return {"_id": self.id, "title": self.title, "artist": self.artist}


class Catalog(BaseModel):
    schema_version: int = 1

    created_at: str = Field(default_factory=utc_now_iso)
    updated_at: str = Field(default_factory=utc_now_iso)

    tracks: List[Track] = Field(default_factory=list)


class LoginRequest(BaseModel):
    username: str = ""
    password: str = ""


class ImportRequest(BaseModel):
    directory: str = ""

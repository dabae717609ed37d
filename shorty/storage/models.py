"""
Record shapes shared by every storage backend.

URLRecord doubles as the codec for the append-only log: one JSON object per
line, shaped `{uuid, short_url, original_url, user_id, deleted}` where `uuid`
carries the record's sequence id.

LLM Prompt Example:
    "Show how a single pydantic model can validate persisted JSON lines,
    tolerate legacy string ids, and serialize with field aliases."
"""

from typing import Optional

from pydantic import BaseModel, ConfigDict, Field


class URLRecord(BaseModel):
    """A stored short-code mapping."""

    model_config = ConfigDict(populate_by_name=True)

    sequence_id: int = Field(alias="uuid", ge=0)
    short_url: str
    original_url: str
    user_id: int = Field(default=0, ge=0)
    deleted: bool = False

    def to_line(self) -> bytes:
        """Serialize as one newline-terminated log line."""
        return (self.model_dump_json(by_alias=True) + "\n").encode("utf-8")

    @classmethod
    def from_line(cls, line: str) -> "URLRecord":
        return cls.model_validate_json(line)

    def tombstone(self, sequence_id: int) -> "URLRecord":
        """Return the deleted copy of this record under a new sequence id."""
        return self.model_copy(update={"deleted": True, "sequence_id": sequence_id})


class ShortenResult(BaseModel):
    """Outcome of get_or_create_short_code. `conflict` marks an existing mapping."""

    short_code: str
    conflict: bool = False


class BatchItem(BaseModel):
    """One entry of a batch shortening request."""

    correlation_id: str
    original_url: Optional[str] = None


class BatchResult(BaseModel):
    """Per-item outcome of resolve_batch: either short_url or error is set."""

    correlation_id: Optional[str] = None
    short_url: Optional[str] = None
    conflict: bool = False
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.error is None


class OwnedURL(BaseModel):
    """Projection of a record returned by list_owned."""

    short_url: str
    original_url: str

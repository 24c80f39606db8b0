from __future__ import annotations

from typing import Optional

from pydantic import BaseModel, ConfigDict, Field as PydanticField
from sqlmodel import Field, SQLModel


# --- Store catalog ---

class CollectionInfo(SQLModel, table=True):
    __tablename__ = "_collections"

    name: str = Field(primary_key=True)
    key_path: str
    auto_increment: bool = False


class IndexInfo(SQLModel, table=True):
    __tablename__ = "_indexes"

    id: Optional[int] = Field(default=None, primary_key=True)
    collection: str = Field(index=True)
    name: str
    key_path: str
    unique: bool = False
    sql_name: str


# --- Persisted records ---
# Field names (and aliases) are part of the on-disk format.

class CountdownRecord(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    id: str
    start_timestamp: Optional[int] = PydanticField(default=None, alias="startTimestamp")
    # records written before durations were saved leave this out
    duration_ms: Optional[int] = PydanticField(default=None, alias="durationMs")

    def to_record(self) -> dict:
        return self.model_dump(by_alias=True)


class ListItem(BaseModel):
    model_config = ConfigDict(frozen=True)

    text: str


class DistractionListRecord(BaseModel):
    id: str
    items: list[ListItem] = PydanticField(default_factory=list)

    def to_record(self) -> dict:
        return self.model_dump()

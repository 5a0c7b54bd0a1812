from pydantic import BaseModel, Field
from typing import Any, Dict, Optional


class EdgeServerCreate(BaseModel):
    name: str
    host: str
    port: int = 5000
    protocol: str = Field("http", pattern="^https?$")
    api_key: str = Field(..., min_length=8)
    capacity: Dict[str, Any] = {}
    location: Dict[str, Any] = {}


class EdgeServerUpdate(BaseModel):
    name: Optional[str] = None
    host: Optional[str] = None
    port: Optional[int] = None
    protocol: Optional[str] = Field(None, pattern="^https?$")
    api_key: Optional[str] = Field(None, min_length=8)
    status: Optional[str] = Field(None, pattern="^(active|inactive|error)$")
    capacity: Optional[Dict[str, Any]] = None
    location: Optional[Dict[str, Any]] = None


class EdgeMetadataPush(BaseModel):
    """Body of a metadata push from the origin."""
    videoId: str
    videoData: Dict[str, Any]

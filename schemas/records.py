"""
Pydantic schemas for records written by the default materializer
"""

import html
import re
from typing import Any, Dict, Optional

from pydantic import BaseModel, Field, field_validator

_TAGS = re.compile(r"<[^>]*>")


def strip_tags(value: str) -> str:
    """Remove markup and decode entities, as titles are shown as plain text"""
    return html.unescape(_TAGS.sub("", value)).strip()


class ImportedRecordCreate(BaseModel):
    """
    Schema for creating imported records with validation.

    Ensures:
    - A non-empty plain-text title
    - Meta values are strings
    """

    record_type: str = Field(..., min_length=1, max_length=50)
    status: str = Field("draft", max_length=20)

    title: str = Field(..., min_length=1, max_length=500)
    content: str = ""
    excerpt: str = ""
    meta: Dict[str, str] = Field(default_factory=dict)

    import_run_id: str = Field(..., min_length=1, max_length=64)

    @field_validator("title", mode="before")
    @classmethod
    def clean_title(cls, v):
        """Strip markup and whitespace from the title"""
        if v is None:
            return ""
        return strip_tags(str(v))

    @field_validator("meta", mode="before")
    @classmethod
    def clean_meta(cls, v: Optional[Dict[str, Any]]):
        """Drop empty values and coerce the rest to strings"""
        if not v:
            return {}
        return {str(k): str(val).strip() for k, val in v.items() if str(val).strip()}

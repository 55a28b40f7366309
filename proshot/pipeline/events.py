"""
Trigger Events and the Event Filter

A storage-finalize notification becomes a ``StorageEvent``. The filter
decides whether the pipeline should act on it and extracts the owner and
file name from the object path.
"""

from dataclasses import dataclass
from typing import Optional

from pydantic import AliasChoices, BaseModel, ConfigDict, Field

from proshot.core.exceptions import ValidationSkip


class UploadMetadata(BaseModel):
    """Custom metadata the upload flow attaches to the object."""
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    project_id: Optional[str] = Field(None, alias="projectId")
    user_prompt: Optional[str] = Field(None, alias="userPrompt")
    original_name: Optional[str] = Field(None, alias="originalName")


class StorageEvent(BaseModel):
    """Notification that a new object exists in a bucket."""
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    bucket: str = Field(validation_alias=AliasChoices("bucket", "bucketId"))
    object_path: str = Field(
        validation_alias=AliasChoices("object_path", "objectName", "objectPath", "name")
    )
    content_type: Optional[str] = Field(
        None, validation_alias=AliasChoices("content_type", "contentType")
    )
    custom_metadata: Optional[UploadMetadata] = Field(
        None, validation_alias=AliasChoices("custom_metadata", "customMetadata", "metadata")
    )

    @property
    def project_id(self) -> Optional[str]:
        if self.custom_metadata and self.custom_metadata.project_id:
            return self.custom_metadata.project_id.strip() or None
        return None

    @property
    def user_prompt(self) -> Optional[str]:
        if self.custom_metadata and self.custom_metadata.user_prompt:
            return self.custom_metadata.user_prompt.strip() or None
        return None

    @property
    def original_name(self) -> Optional[str]:
        if self.custom_metadata:
            return self.custom_metadata.original_name
        return None


@dataclass(frozen=True)
class AcceptedUpload:
    """An event the pipeline will process."""
    event: StorageEvent
    owner_id: str
    file_name: str


def accept_event(
    event: StorageEvent,
    owner_scope_prefix: str = "owners",
    uploads_segment: str = "uploads"
) -> AcceptedUpload:
    """
    Apply the event filter.

    Accepts only image content under an uploads segment, with a non-empty
    owner id (the segment after ``owner_scope_prefix``) and file name.

    Raises:
        ValidationSkip: with ``details["reason"]`` naming why the event is
            out of scope
    """
    segments = event.object_path.split("/")

    # The uploads segment must be a directory, never the object itself
    if uploads_segment not in segments[:-1]:
        raise ValidationSkip(
            f"Object is not an upload: {event.object_path}",
            details={"reason": "not_an_upload"}
        )

    content_type = event.content_type or ""
    if not content_type.startswith("image/"):
        raise ValidationSkip(
            f"Object is not an image: {content_type or 'unknown'}",
            details={"reason": "not_an_image"}
        )

    owner_id = ""
    if owner_scope_prefix in segments:
        index = segments.index(owner_scope_prefix)
        if index + 1 < len(segments):
            owner_id = segments[index + 1]
    file_name = segments[-1]

    if not owner_id or owner_id == uploads_segment or not file_name:
        raise ValidationSkip(
            f"Cannot extract owner and file name from {event.object_path}",
            details={"reason": "malformed_path"}
        )

    return AcceptedUpload(event=event, owner_id=owner_id, file_name=file_name)

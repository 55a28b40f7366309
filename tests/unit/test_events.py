import pytest

from proshot.core.exceptions import ValidationSkip
from proshot.pipeline.events import StorageEvent, accept_event


def _event(path="owners/u1/uploads/shoe.png", content_type="image/png", metadata=None):
    payload = {"bucket": "b", "objectName": path, "contentType": content_type}
    if metadata is not None:
        payload["customMetadata"] = metadata
    return StorageEvent.model_validate(payload)


def test_accepts_image_upload():
    upload = accept_event(_event())

    assert upload.owner_id == "u1"
    assert upload.file_name == "shoe.png"


def test_results_are_not_reprocessed():
    with pytest.raises(ValidationSkip) as exc_info:
        accept_event(_event(path="owners/u1/results/shoe.png"))

    assert exc_info.value.details["reason"] == "not_an_upload"


@pytest.mark.parametrize("path", ["owners/u1/uploads", "owners/u1/results/uploads"])
def test_uploads_as_final_segment_is_skipped(path):
    with pytest.raises(ValidationSkip) as exc_info:
        accept_event(_event(path=path))

    assert exc_info.value.details["reason"] == "not_an_upload"


@pytest.mark.parametrize("content_type", ["application/pdf", "", None, "text/plain"])
def test_non_images_are_skipped(content_type):
    with pytest.raises(ValidationSkip) as exc_info:
        accept_event(_event(content_type=content_type))

    assert exc_info.value.details["reason"] == "not_an_image"


@pytest.mark.parametrize("path", [
    "owners/u1/uploads/",
    "owners//uploads/shoe.png",
    "uploads/shoe.png",
    "owners/uploads/shoe.png",
])
def test_malformed_paths_are_skipped(path):
    with pytest.raises(ValidationSkip) as exc_info:
        accept_event(_event(path=path))

    assert exc_info.value.details["reason"] == "malformed_path"


def test_custom_layout():
    event = _event(path="tenants/acme/incoming/a.jpg", content_type="image/jpeg")
    upload = accept_event(event, owner_scope_prefix="tenants", uploads_segment="incoming")

    assert upload.owner_id == "acme"


def test_metadata_aliases():
    event = _event(metadata={"projectId": " p1 ", "userPrompt": "  on marble  ", "originalName": "Shoe.PNG"})

    assert event.project_id == "p1"
    assert event.user_prompt == "on marble"
    assert event.original_name == "Shoe.PNG"


def test_blank_metadata_is_absent():
    event = _event(metadata={"projectId": "", "userPrompt": "   "})

    assert event.project_id is None
    assert event.user_prompt is None


def test_storage_notification_field_names():
    event = StorageEvent.model_validate({
        "bucketId": "b",
        "name": "owners/u1/uploads/x.webp",
        "contentType": "image/webp",
        "metadata": {"projectId": "p9"},
    })

    assert event.bucket == "b"
    assert event.object_path == "owners/u1/uploads/x.webp"
    assert event.project_id == "p9"

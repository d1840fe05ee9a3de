"""HTTP surface: routing, ownership, and error-to-status mapping."""

import asyncio

import pytest
from fastapi.testclient import TestClient

from conftest import FakeStructured, FakeTranscriber, FakeVideos, seed_storyline, seed_with_image
from storyline.main import create_app
from storyline.schemas import SegmentStatus
from storyline.services.providers import RawTranscriptSegment, VideoJobStatus
from storyline.services.scene_prompts import SCENE_PROMPT_TOOL

OWNER = {"X-User-ID": "user-1"}
STRANGER = {"X-User-ID": "user-2"}


@pytest.fixture
def client_for(make_pipeline):
    clients = []

    def _client(**pipeline_kwargs) -> TestClient:
        client = TestClient(create_app(pipeline=make_pipeline(**pipeline_kwargs)))
        client.__enter__()
        clients.append(client)
        return client

    yield _client
    for client in clients:
        client.__exit__(None, None, None)


def test_healthz(client_for):
    assert client_for().get("/healthz").json() == {"status": "ok"}


def test_user_header_is_required(client_for):
    assert client_for().get("/api/storylines").status_code == 422


def test_create_storyline_from_upload(client_for):
    client = client_for(
        transcriber=FakeTranscriber(segments=[RawTranscriptSegment(text="Hello there.", start=0.0, end=3.0)]),
        structured=FakeStructured(
            {
                SCENE_PROMPT_TOOL.name: {
                    "prompts": [
                        {"timestamp": "00:00 - 00:03", "text": "Hello there.", "prompt": "a friendly wave"}
                    ]
                }
            }
        ),
    )

    response = client.post(
        "/api/storylines",
        headers=OWNER,
        data={"style": "pixar", "file_name": "Greeting"},
        files={"audio": ("clip.mp3", b"fake-audio", "audio/mpeg")},
    )

    assert response.status_code == 201
    body = response.json()
    assert body["success"] is True
    storyline_id = body["data"]["storyline_id"]

    listed = client.get("/api/storylines", headers=OWNER).json()
    assert [s["id"] for s in listed] == [storyline_id]
    assert listed[0]["name"] == "Greeting"


def test_failed_stage_maps_to_unprocessable(client_for):
    response = client_for().post(
        "/api/storylines",
        headers=OWNER,
        data={"style": "watercolor"},
        files={"audio": ("clip.mp3", b"fake-audio", "audio/mpeg")},
    )

    assert response.status_code == 422
    assert response.json()["detail"] == "Invalid style provided: watercolor"


def test_other_users_storyline_is_not_found(client_for, store):
    client = client_for()
    storyline = asyncio.run(seed_storyline(store, 1))

    assert client.get(f"/api/storylines/{storyline.id}", headers=OWNER).status_code == 200
    assert client.get(f"/api/storylines/{storyline.id}", headers=STRANGER).status_code == 404
    assert client.delete(f"/api/storylines/{storyline.id}", headers=STRANGER).status_code == 404


def test_locked_prompt_edit_is_bad_request(client_for, store):
    client = client_for()
    storyline = asyncio.run(seed_with_image(store, "1", count=2))

    locked = client.patch(
        f"/api/storylines/{storyline.id}/segments/1/prompt", headers=OWNER, json={"prompt": "new"}
    )
    edited = client.patch(
        f"/api/storylines/{storyline.id}/segments/2/prompt", headers=OWNER, json={"prompt": "new"}
    )

    assert locked.status_code == 400
    assert edited.status_code == 200
    assert edited.json()["segments"][1]["prompt"] == "new"


def test_submit_video_accepts_and_tracks_job(client_for, store):
    client = client_for(videos=FakeVideos(job_id="job-7", statuses=[VideoJobStatus(status="RUNNING")]))
    storyline = asyncio.run(seed_with_image(store))

    response = client.post(f"/api/storylines/{storyline.id}/segments/1/video", headers=OWNER)

    assert response.status_code == 202
    assert response.json()["data"]["job_id"] == "job-7"
    owner = client.get("/api/storylines/video-jobs/job-7", headers=OWNER)
    assert owner.json() == {"job_id": "job-7", "storyline_id": storyline.id, "segment_id": "1"}
    assert client.get("/api/storylines/video-jobs/job-7", headers=STRANGER).status_code == 404
    stored = asyncio.run(store.get(storyline.id))
    assert stored.segments[0].status == SegmentStatus.VIDEO_PROCESSING


def test_submit_video_for_pending_segment_is_rejected(client_for, store):
    client = client_for()
    storyline = asyncio.run(seed_storyline(store, 1))

    response = client.post(f"/api/storylines/{storyline.id}/segments/1/video", headers=OWNER)

    assert response.status_code == 422


def test_delete_then_fetch_is_not_found(client_for, store):
    client = client_for()
    storyline = asyncio.run(seed_storyline(store, 1))

    assert client.delete(f"/api/storylines/{storyline.id}", headers=OWNER).status_code == 204
    assert client.get(f"/api/storylines/{storyline.id}", headers=OWNER).status_code == 404

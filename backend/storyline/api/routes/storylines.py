from typing import List, Optional

import structlog
from fastapi import APIRouter, Depends, File, Form, HTTPException, Response, UploadFile, status

from storyline.api.deps import get_current_user_id, get_owned_storyline, get_pipeline
from storyline.core.errors import StorylineNotFoundError
from storyline.schemas import (
    CharacterData,
    CharacterRequest,
    ImageGenerationData,
    ImageGenerationRequest,
    SegmentPromptUpdate,
    StageResult,
    Storyline,
    TranscriptSceneData,
    VideoJobOwner,
    VideoSubmissionData,
)
from storyline.services.pipeline import StorylinePipeline

logger = structlog.get_logger()
router = APIRouter(prefix="/storylines", tags=["storylines"])


def _unwrap(result: StageResult):
    if not result.success:
        raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=result.message)
    return result


@router.post("", response_model=StageResult[TranscriptSceneData], status_code=status.HTTP_201_CREATED)
async def create_storyline(
    audio: UploadFile = File(...),
    style: str = Form(...),
    file_name: Optional[str] = Form(None),
    original_video_url: Optional[str] = Form(None),
    original_video: Optional[UploadFile] = File(None),
    pipeline: StorylinePipeline = Depends(get_pipeline),
    user_id: str = Depends(get_current_user_id),
):
    original_bytes = await original_video.read() if original_video is not None else None
    result = await pipeline.run_transcript_and_scene_pipeline(
        await audio.read(),
        style,
        user_id=user_id,
        file_name=file_name or (original_video.filename if original_video is not None else None),
        audio_file_name=audio.filename,
        original_video_url=original_video_url,
        original_video=original_bytes,
        original_content_type=original_video.content_type if original_video is not None else None,
    )
    return _unwrap(result)


@router.post("/characters", response_model=StageResult[CharacterData])
async def generate_characters(
    payload: CharacterRequest,
    pipeline: StorylinePipeline = Depends(get_pipeline),
    user_id: str = Depends(get_current_user_id),
):
    return _unwrap(await pipeline.run_character_pipeline(payload.transcript_text, payload.style))


@router.post("/images", response_model=StageResult[ImageGenerationData])
async def generate_images(
    payload: ImageGenerationRequest,
    pipeline: StorylinePipeline = Depends(get_pipeline),
    user_id: str = Depends(get_current_user_id),
):
    if payload.storyline_id:
        storyline = await pipeline.get_storyline(payload.storyline_id)
        if storyline.user_id != user_id:
            raise StorylineNotFoundError(payload.storyline_id)
    result = await pipeline.run_image_generation_pipeline(
        payload.segments, payload.character, payload.storyline_id
    )
    return _unwrap(result)


@router.get("/video-jobs/{job_id}", response_model=VideoJobOwner)
async def get_video_job(
    job_id: str,
    pipeline: StorylinePipeline = Depends(get_pipeline),
    user_id: str = Depends(get_current_user_id),
):
    owner = await pipeline.find_video_job(job_id)
    if owner is None:
        raise HTTPException(status_code=404, detail="Video job not found")
    storyline = await pipeline.get_storyline(owner.storyline_id)
    if storyline.user_id != user_id:
        raise HTTPException(status_code=404, detail="Video job not found")
    return owner


@router.get("", response_model=List[Storyline])
async def list_storylines(
    pipeline: StorylinePipeline = Depends(get_pipeline),
    user_id: str = Depends(get_current_user_id),
):
    return await pipeline.list_storylines(user_id)


@router.get("/{storyline_id}", response_model=Storyline)
async def get_storyline(storyline: Storyline = Depends(get_owned_storyline)):
    return storyline


@router.patch("/{storyline_id}/segments/{segment_id}/prompt", response_model=Storyline)
async def update_segment_prompt(
    segment_id: str,
    payload: SegmentPromptUpdate,
    storyline: Storyline = Depends(get_owned_storyline),
    pipeline: StorylinePipeline = Depends(get_pipeline),
):
    return await pipeline.update_segment_prompt(storyline.id, segment_id, payload.prompt)


@router.post(
    "/{storyline_id}/segments/{segment_id}/video",
    response_model=StageResult[VideoSubmissionData],
    status_code=status.HTTP_202_ACCEPTED,
)
async def submit_segment_video(
    segment_id: str,
    storyline: Storyline = Depends(get_owned_storyline),
    pipeline: StorylinePipeline = Depends(get_pipeline),
):
    result = _unwrap(await pipeline.submit_video_for_segment(storyline.id, segment_id))
    if pipeline.poller is not None:
        pipeline.poll_video_job(result.data.job_id, storyline.id, segment_id)
    else:
        logger.warning("api.video_poll_skipped", storyline_id=storyline.id, segment_id=segment_id)
    return result


@router.delete("/{storyline_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_storyline(
    storyline_id: str,
    pipeline: StorylinePipeline = Depends(get_pipeline),
    user_id: str = Depends(get_current_user_id),
):
    await pipeline.delete_storyline(storyline_id, user_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)

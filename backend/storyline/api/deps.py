from fastapi import Depends, Header, HTTPException, Request, status

from storyline.core.config import get_settings
from storyline.core.errors import ProviderConfigurationError, StorylineNotFoundError
from storyline.schemas import Storyline
from storyline.services.pipeline import StorylinePipeline, build_pipeline


def get_pipeline(request: Request) -> StorylinePipeline:
    pipeline = getattr(request.app.state, "pipeline", None)
    if pipeline is None:
        try:
            pipeline = build_pipeline(get_settings())
        except ProviderConfigurationError as exc:
            raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(exc)) from exc
        request.app.state.pipeline = pipeline
    return pipeline


def get_current_user_id(x_user_id: str = Header(..., alias="X-User-ID")) -> str:
    user_id = x_user_id.strip()
    if not user_id:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Missing user id")
    return user_id


async def get_owned_storyline(
    storyline_id: str,
    pipeline: StorylinePipeline = Depends(get_pipeline),
    user_id: str = Depends(get_current_user_id),
) -> Storyline:
    storyline = await pipeline.get_storyline(storyline_id)
    if storyline.user_id != user_id:
        raise StorylineNotFoundError(storyline_id)
    return storyline

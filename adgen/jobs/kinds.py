"""One handler per JobKind: parameter schema, delivery mode, result extraction.

The registry is checked for completeness at import time so a new ``JobKind``
variant without a handler fails loudly instead of falling through a string
comparison somewhere.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Literal

from pydantic import BaseModel, ConfigDict, Field
from pydantic import ValidationError as PydanticValidationError

from adgen.errors import ValidationError
from adgen.jobs.models import JobKind
from adgen.review.models import Candidate

logger = logging.getLogger(__name__)


class Delivery(str, Enum):
    POLL = "poll"
    STREAM = "stream"


# ---------------------------------------------------------------------------
# Parameter schemas
# ---------------------------------------------------------------------------

class _Params(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="forbid")


class StrategySuggestion(BaseModel):
    id: str
    title: str
    description: str = ""
    approach: str = ""
    visual_direction: str = ""
    hook_style: str = ""
    differentiator: str = ""
    estimated_impact: Literal["high", "medium", "low"] = "medium"


class CampaignParameters(_Params):
    """Complete campaign: scripts then one image per script, streamed."""

    product: str = Field(min_length=1)
    brand_name: str = Field(min_length=1)
    selling_what: str = ""
    target_audience: str = ""
    call_to_action: str = ""
    visual_style: str = ""
    color_scheme: str = ""
    text_emphasis: str = ""
    platform: str = ""
    image_format: str = ""
    special_offers: str = ""
    product_image_urls: list[str] = Field(default_factory=list)
    competitor_search_query: str = ""
    selected_strategy: StrategySuggestion


class DeepResearchParameters(_Params):
    brand_id: str = Field(min_length=1, alias="brandId")
    product_id: str = Field(min_length=1, alias="productId")
    selected_angles: list[str] = Field(default_factory=list, alias="selectedAngles")


class PromptScoringParameters(_Params):
    ad_id: str = Field(min_length=1, alias="adId")
    selected_prompt_ids: list[int] = Field(default_factory=list, alias="selectedPromptIds")


class ImageSetParameters(_Params):
    brand_id: str = Field(min_length=1, alias="brandId")
    product_id: str = Field(min_length=1, alias="productId")
    ad_type: Literal["image", "video"] = Field(default="image", alias="adType")
    angles: list[str] = Field(min_length=1)


class VideoParameters(_Params):
    ugc_ad_id: str = Field(min_length=1, alias="ugcAdId")
    aspect_ratio: Literal["9:16", "16:9", "1:1"] = Field(default="9:16", alias="aspectRatio")


# ---------------------------------------------------------------------------
# Result -> candidates
# ---------------------------------------------------------------------------

def _first(item: dict[str, Any], *keys: str) -> Any:
    for key in keys:
        value = item.get(key)
        if value not in (None, ""):
            return value
    return None


def _items(result: dict[str, Any], *keys: str) -> list[dict[str, Any]]:
    for key in keys:
        value = result.get(key)
        if isinstance(value, list):
            return [v for v in value if isinstance(v, dict)]
    return []


def _to_candidate(
    job_id: str,
    item: dict[str, Any],
    ordinal: int,
    *,
    media_keys: tuple[str, ...] = ("imageUrl", "url", "originalUrl"),
    created_at: Any = None,
) -> Candidate | None:
    cid = _first(item, "_id", "id", "styleKey") or f"{job_id}-{ordinal}"
    try:
        return Candidate(
            id=str(cid),
            job_id=job_id,
            ordinal=ordinal,
            score=_first(item, "score"),
            media_ref=str(_first(item, *media_keys) or ""),
            title=str(_first(item, "promptTitle", "title", "styleName", "headline") or ""),
            metadata={k: v for k, v in item.items() if k not in ("_id", "id")},
            created_at=_first(item, "createdAt", "generatedAt") or created_at,
        )
    except PydanticValidationError as e:
        logger.warning("Skipping malformed candidate %s in job %s: %s", cid, job_id, e)
        return None


def _collect(job_id: str, items: list[dict[str, Any]], **kwargs: Any) -> list[Candidate]:
    out = []
    for i, item in enumerate(items):
        candidate = _to_candidate(job_id, item, i, **kwargs)
        if candidate is not None:
            out.append(candidate)
    return out


def _campaign_candidates(job_id: str, result: dict[str, Any]) -> list[Candidate]:
    ad = result.get("imageAd") if isinstance(result.get("imageAd"), dict) else result
    variations = _items(ad, "imageVariations")
    if variations:
        return _collect(job_id, variations, created_at=ad.get("createdAt"))
    if ad.get("imageUrl"):
        single = {**ad, "_id": ad.get("_id") or f"{job_id}-0"}
        return _collect(job_id, [single])
    return []


def _image_set_candidates(job_id: str, result: dict[str, Any]) -> list[Candidate]:
    return _collect(job_id, _items(result, "generatedImages", "images"))


def _deep_research_candidates(job_id: str, result: dict[str, Any]) -> list[Candidate]:
    return _collect(job_id, _items(result, "images", "generatedImages"))


def _prompt_scoring_candidates(job_id: str, result: dict[str, Any]) -> list[Candidate]:
    return _collect(job_id, _items(result, "prompts", "items"), media_keys=("imageUrl",))


def _video_candidates(job_id: str, result: dict[str, Any]) -> list[Candidate]:
    videos = _items(result, "videos")
    if videos:
        return _collect(job_id, videos, media_keys=("videoUrl", "url"))
    video = result.get("generatedVideo") if isinstance(result.get("generatedVideo"), dict) else result
    if video.get("videoUrl"):
        return _collect(job_id, [{**video, "_id": video.get("_id") or f"{job_id}-0"}], media_keys=("videoUrl",))
    return []


# ---------------------------------------------------------------------------
# Registry
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class KindHandler:
    kind: JobKind
    parameters_model: type[BaseModel]
    delivery: Delivery
    extract: Callable[[str, dict[str, Any]], list[Candidate]]
    stream_path: str | None = None
    credit_estimate: int = 1

    def validate(self, payload: dict[str, Any] | BaseModel) -> dict[str, Any]:
        """Return the wire form of ``payload`` or raise ValidationError."""
        if isinstance(payload, BaseModel):
            payload = payload.model_dump(by_alias=True)
        if not isinstance(payload, dict):
            raise ValidationError(f"{self.kind.value} parameters must be an object")
        try:
            model = self.parameters_model.model_validate(payload)
        except PydanticValidationError as e:
            errors = [
                f"{'.'.join(str(p) for p in err['loc']) or '<root>'}: {err['msg']}"
                for err in e.errors()
            ]
            raise ValidationError(f"Invalid {self.kind.value} parameters", errors=errors) from e
        return model.model_dump(mode="json", by_alias=True)

    def candidates(self, job_id: str, result: dict[str, Any] | None) -> list[Candidate]:
        if not result:
            return []
        return self.extract(job_id, result)


HANDLERS: dict[JobKind, KindHandler] = {
    JobKind.CAMPAIGN: KindHandler(
        kind=JobKind.CAMPAIGN,
        parameters_model=CampaignParameters,
        delivery=Delivery.STREAM,
        extract=_campaign_candidates,
        stream_path="/api/image-ads/generate-complete-campaign-stream",
    ),
    JobKind.DEEP_RESEARCH: KindHandler(
        kind=JobKind.DEEP_RESEARCH,
        parameters_model=DeepResearchParameters,
        delivery=Delivery.POLL,
        extract=_deep_research_candidates,
    ),
    JobKind.PROMPT_SCORING: KindHandler(
        kind=JobKind.PROMPT_SCORING,
        parameters_model=PromptScoringParameters,
        delivery=Delivery.POLL,
        extract=_prompt_scoring_candidates,
        credit_estimate=0,
    ),
    JobKind.IMAGE_SET: KindHandler(
        kind=JobKind.IMAGE_SET,
        parameters_model=ImageSetParameters,
        delivery=Delivery.POLL,
        extract=_image_set_candidates,
        credit_estimate=4,
    ),
    JobKind.VIDEO: KindHandler(
        kind=JobKind.VIDEO,
        parameters_model=VideoParameters,
        delivery=Delivery.POLL,
        extract=_video_candidates,
    ),
}

_missing = set(JobKind) - set(HANDLERS)
if _missing:
    raise RuntimeError(f"No handler for job kinds: {sorted(k.value for k in _missing)}")


def handler_for(kind: JobKind | str) -> KindHandler:
    try:
        return HANDLERS[JobKind(kind)]
    except ValueError as e:
        raise ValidationError(f"Unknown job kind: {kind!r}") from e

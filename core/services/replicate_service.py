# =============================================================================
# core/services/replicate_service.py - Replicate Staging Provider
# =============================================================================
# Starts Stable Diffusion predictions on Replicate and reads their status.
# Predictions run asynchronously: Replicate calls our webhook when they
# finish, and GET /staging/{id} can also poll while a job is processing.
#
# Usage:
#   from core.services.replicate_service import ReplicateService
#   prediction = ReplicateService.create_prediction(image_url, "kitchen", "modern", job_id)
# =============================================================================

import logging
from typing import Any

import httpx

from app.config import settings
from app.exceptions import ProviderError
from core.constants import room_label, style_label

logger = logging.getLogger(__name__)

REPLICATE_API_URL = "https://api.replicate.com/v1"

# Prediction statuses reported by Replicate
TERMINAL_SUCCESS = "succeeded"
TERMINAL_FAILURES = ("failed", "canceled")

NEGATIVE_PROMPT = (
    "blurry, low quality, distorted, warped, bent lines, wrong perspective, "
    "floating objects, unrealistic shadows, cartoon, illustration, painting, "
    "artificial, CGI, rendered, 3D render, video game, "
    "people, pets, animals, faces, hands, "
    "text, watermark, signature, logo, "
    "cluttered, messy, dirty, damaged, "
    "different room, different angle, zoomed, cropped differently, "
    "walls changed, floor changed, ceiling changed, windows moved, doors moved"
)


def furniture_for_room(room_type: str, style: str) -> str:
    """Furniture list used in the prompt for a room type."""
    if room_type.startswith("bedroom-"):
        return f"{style} bed with headboard, matching nightstands, soft bedding and pillows, area rug, table lamps, wall art"
    if room_type == "living-room":
        return f"{style} sofa, accent chairs, coffee table, side tables, area rug, floor lamp, wall art, decorative pillows"
    if room_type == "dining-room":
        return f"{style} dining table, dining chairs, chandelier or pendant light, area rug, sideboard, table centerpiece"
    if room_type == "kitchen":
        return "bar stools at counter, decorative fruit bowl, small plants, coordinated accessories"
    if room_type == "home-office":
        return f"{style} desk, ergonomic office chair, bookshelf, desk lamp, wall art, area rug"
    if room_type == "bathroom":
        return "matching towels, bath mat, decorative accessories, small plant, coordinated soap dispenser"
    if room_type == "outdoor-patio":
        return f"{style} outdoor furniture set, potted plants, outdoor rug, decorative cushions, lanterns"
    return f"{style} furniture, area rug, wall art, decorative accessories, plants"


def build_prompt(room_type: str, style: str) -> str:
    """Keyword-style Stable Diffusion prompt for a room and style."""
    style_name = style_label(style)
    return (
        f"Professional real estate photo, {room_label(room_type)} interior, "
        f"{style_name} style furniture and decor, "
        f"{furniture_for_room(room_type, style_name)}, "
        "photorealistic, high quality, professional photography, natural lighting, "
        "soft shadows, 8k resolution, architectural photography, interior design magazine quality, "
        "MLS listing photo, staged home, market ready"
    )


def extract_output_url(output: Any) -> str | None:
    """Replicate returns a URL or a list of URLs; take the first."""
    if isinstance(output, list):
        return output[0] if output else None
    if isinstance(output, str):
        return output
    return None


class ReplicateService:
    """Thin client for the Replicate predictions API."""

    @staticmethod
    def _headers() -> dict[str, str]:
        if not settings.REPLICATE_API_TOKEN:
            raise ProviderError("REPLICATE_API_TOKEN is not configured")
        return {
            "Authorization": f"Bearer {settings.REPLICATE_API_TOKEN}",
            "Content-Type": "application/json",
        }

    @staticmethod
    def create_prediction(
        image_url: str,
        room_type: str,
        style: str,
        job_id: str,
        webhook_url: str | None = None,
    ) -> dict[str, Any]:
        """
        Start a staging prediction.

        Args:
            image_url: Public URL of the original image
            room_type: Room type ID
            style: Furniture style ID
            job_id: Staging job the prediction belongs to (for logs)
            webhook_url: Where Replicate reports completion

        Returns:
            Prediction dict (id, status, urls, ...)

        Raises:
            ProviderError: If the API rejects the request
        """
        body: dict[str, Any] = {
            "version": settings.REPLICATE_MODEL_VERSION,
            "input": {
                "prompt": build_prompt(room_type, style),
                "negative_prompt": NEGATIVE_PROMPT,
                "image": image_url,
                "num_inference_steps": 30,
                "guidance_scale": 7.5,
            },
        }
        if webhook_url:
            body["webhook"] = webhook_url
            body["webhook_events_filter"] = ["completed"]

        try:
            response = httpx.post(
                f"{REPLICATE_API_URL}/predictions",
                headers=ReplicateService._headers(),
                json=body,
                timeout=30,
            )
        except httpx.HTTPError as e:
            raise ProviderError(str(e))

        if response.status_code >= 400:
            raise ProviderError(f"Replicate API error: {response.status_code} - {response.text}")

        prediction = response.json()
        logger.info(f"Started prediction {prediction.get('id')} for job {job_id}")
        return prediction

    @staticmethod
    def get_prediction(prediction_id: str) -> dict[str, Any]:
        """
        Get the current state of a prediction.

        Raises:
            ProviderError: If the prediction can't be fetched
        """
        try:
            response = httpx.get(
                f"{REPLICATE_API_URL}/predictions/{prediction_id}",
                headers=ReplicateService._headers(),
                timeout=15,
            )
        except httpx.HTTPError as e:
            raise ProviderError(str(e))

        if response.status_code >= 400:
            raise ProviderError(f"Failed to get prediction status: {response.status_code}")

        return response.json()

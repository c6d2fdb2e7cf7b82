from __future__ import annotations

import logging
import time
from typing import Any, Dict

import requests

from stickershop.config import settings

logger = logging.getLogger(__name__)

API_URL = "https://api.replicate.com/v1"

# https://replicate.com/cjwbw/rembg
BACKGROUND_REMOVAL_MODEL = "fb8af171cfa1616ddcf1242c093f9c46bcada5ad4cf6f2fbe8b81b330ec5c003"
# https://replicate.com/fofr/edge-detection-canny
BORDER_DETECTION_MODEL = "36c0a4a8a51e996ca3c55ec9bb9ea6fc9450c29f8458fe8d8c9562dd571a1f28"

_FINAL = ("succeeded", "failed", "canceled")


class ImageProcessingError(Exception):
    pass


def _headers() -> Dict[str, str]:
    if not settings.replicate_api_token:
        raise ImageProcessingError(
            "Replicate API token not configured. Please set the REPLICATE_API_TOKEN environment variable."
        )
    return {"Authorization": f"Bearer {settings.replicate_api_token}", "Content-Type": "application/json"}


def run_model(version: str, inputs: Dict[str, Any], timeout: float = 120.0) -> Any:
    headers = _headers()
    try:
        resp = requests.post(
            f"{API_URL}/predictions",
            json={"version": version, "input": inputs},
            headers={**headers, "Prefer": "wait"},
            timeout=70,
        )
        resp.raise_for_status()
        prediction = resp.json()

        deadline = time.monotonic() + timeout
        while prediction.get("status") not in _FINAL:
            if time.monotonic() > deadline:
                raise ImageProcessingError("Image processing timed out")
            time.sleep(1)
            resp = requests.get(prediction["urls"]["get"], headers=headers, timeout=15)
            resp.raise_for_status()
            prediction = resp.json()
    except requests.RequestException as exc:
        raise ImageProcessingError(f"Replicate request failed: {exc}") from exc

    if prediction["status"] != "succeeded":
        raise ImageProcessingError(prediction.get("error") or f"Prediction {prediction['status']}")
    return prediction.get("output")


def _first_url(output: Any) -> str:
    # output is either a bare url or a list of urls
    if isinstance(output, str):
        return output
    if isinstance(output, list) and output:
        return str(output[0])
    return str(output)


def remove_background(image_url: str) -> str:
    logger.info("Removing background from %s", image_url)
    return _first_url(run_model(BACKGROUND_REMOVAL_MODEL, {"image": image_url}))


def detect_borders(image_url: str, low_threshold: int = 100, high_threshold: int = 200) -> Dict[str, Any]:
    logger.info("Detecting borders on %s (%s/%s)", image_url, low_threshold, high_threshold)
    output = run_model(
        BORDER_DETECTION_MODEL,
        {"image": image_url, "low_threshold": low_threshold, "high_threshold": high_threshold},
    )
    return {"url": _first_url(output), "lowThreshold": low_threshold, "highThreshold": high_threshold}

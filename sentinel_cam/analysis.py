"""Remote person analysis: client contract and the Gemini backend.

The scan scheduler only sees `AnalysisClient.detect(frame)`, which either
returns an `AnalysisResult` or raises one of two failures:
`QuotaExceededError` (rate limited, handled by backing off) or
`AnalysisError` (anything else). Request formatting and response validation
live entirely in the client.
"""

from __future__ import annotations

import base64
import json
import logging
from dataclasses import dataclass
from typing import Any, Optional, Union

import cv2  # JPEG encoding
import httpx  # HTTP client
import numpy as np
from pydantic import BaseModel, Field, StrictBool, StrictFloat, StrictInt, StrictStr, ValidationError

from .config import Config
from .detector import Frame

logger = logging.getLogger(__name__)

GEMINI_ENDPOINT = "https://generativelanguage.googleapis.com/v1beta/models/{model}:generateContent"

PROMPT = """CRITICAL SECURITY SYSTEM.
Analyse the image to detect INTRUDERS or HUMAN PRESENCE.

Reply EXACTLY in this JSON format:
{
  "personDetected": boolean,
  "confidence": number,
  "description": "string"
}

Rules:
1. If any part of a human body is visible (even partially), "personDetected" must be TRUE.
2. "description": be very descriptive about the person's appearance.
3. If the area is empty, confirm that the perimeter is clear."""

RESPONSE_SCHEMA = {
    "type": "OBJECT",
    "properties": {
        "personDetected": {"type": "BOOLEAN"},
        "confidence": {"type": "NUMBER", "description": "Certainty from 0 to 100"},
        "description": {"type": "STRING"},
    },
    "required": ["personDetected", "confidence", "description"],
}


class AnalysisError(Exception):
    """Remote analysis failed (network, malformed reply, server error...)."""


class QuotaExceededError(AnalysisError):
    """Remote analysis was rejected because of rate limits or quota."""


@dataclass(frozen=True)
class AnalysisResult:
    """Validated reply of the remote model."""

    person_detected: bool
    confidence: float  # 0..100
    description: str


class AnalysisClient:
    """Abstract remote analysis capability.

    Subclasses must implement `detect()`. Implementations must not keep any
    retry or backoff logic; the scheduler owns cadence.
    """

    def detect(self, frame: Frame) -> AnalysisResult:
        """Ask whether a person is visible in `frame`.

        Raises:
          QuotaExceededError: The service is rate limiting us.
          AnalysisError: Any other failure.
        """
        raise NotImplementedError


def encode_snapshot(
    pixels: np.ndarray,
    max_width: int = Config.SNAPSHOT_MAX_WIDTH,
    quality: int = Config.SNAPSHOT_JPEG_QUALITY,
) -> bytes:
    """Encode a BGR frame as JPEG, downscaling wider frames to `max_width`."""
    h, w = pixels.shape[:2]
    if w > max_width:
        scale = max_width / float(w)
        pixels = cv2.resize(pixels, (max_width, max(1, int(round(h * scale)))), interpolation=cv2.INTER_AREA)
    ok, buf = cv2.imencode(".jpg", pixels, [int(cv2.IMWRITE_JPEG_QUALITY), int(quality)])
    if not ok:
        raise AnalysisError("could not encode snapshot as JPEG")
    return buf.tobytes()


def _looks_like_quota(text: str) -> bool:
    lowered = text.lower()
    return "429" in lowered or "quota" in lowered or "resource_exhausted" in lowered


class ModelReply(BaseModel):
    """The JSON object the model is asked to answer with."""

    person_detected: StrictBool = Field(..., alias="personDetected")
    confidence: Union[StrictInt, StrictFloat]
    description: StrictStr


def parse_result(payload: Any) -> AnalysisResult:
    """Validate the model's JSON answer.

    Raises:
      AnalysisError: If a required field is missing or has the wrong type.
    """
    try:
        reply = ModelReply.model_validate(payload)
    except ValidationError as e:
        raise AnalysisError(f"invalid analysis reply: {e.error_count()} field error(s)") from e
    confidence = float(max(0.0, min(100.0, reply.confidence)))
    return AnalysisResult(reply.person_detected, confidence, reply.description)


class GeminiAnalysisClient(AnalysisClient):
    """Gemini `generateContent` backend with a JSON response schema."""

    def __init__(
        self,
        api_key: str = Config.GEMINI_API_KEY,
        model: str = Config.GEMINI_MODEL,
        timeout_s: float = Config.ANALYSIS_TIMEOUT_SEC,
        http_client: Optional[httpx.Client] = None,
    ) -> None:
        self.api_key = api_key
        self.model = model
        self._http = http_client or httpx.Client(timeout=timeout_s)

    def close(self) -> None:
        self._http.close()

    def build_request(self, jpeg: bytes) -> dict:
        """Build the request body for one snapshot."""
        return {
            "contents": [
                {
                    "parts": [
                        {
                            "inline_data": {
                                "mime_type": "image/jpeg",
                                "data": base64.b64encode(jpeg).decode("ascii"),
                            }
                        },
                        {"text": PROMPT},
                    ]
                }
            ],
            "generationConfig": {
                "responseMimeType": "application/json",
                "responseSchema": RESPONSE_SCHEMA,
            },
        }

    def detect(self, frame: Frame) -> AnalysisResult:
        if not self.api_key:
            raise AnalysisError("GEMINI_API_KEY is not set")
        body = self.build_request(encode_snapshot(frame.pixels))
        url = GEMINI_ENDPOINT.format(model=self.model)
        try:
            resp = self._http.post(url, json=body, headers={"x-goog-api-key": self.api_key})
        except httpx.HTTPError as e:
            if _looks_like_quota(str(e)):
                raise QuotaExceededError(str(e)) from e
            raise AnalysisError(f"analysis request failed: {e}") from e
        if resp.status_code == 429 or (resp.status_code >= 400 and _looks_like_quota(resp.text)):
            raise QuotaExceededError(f"quota exceeded (HTTP {resp.status_code})")
        if resp.status_code >= 400:
            raise AnalysisError(f"analysis service returned HTTP {resp.status_code}")
        return parse_result(self._extract_json(resp))

    def _extract_json(self, resp: httpx.Response) -> Any:
        """Pull the model's JSON text out of a generateContent reply."""
        try:
            data = resp.json()
            text = data["candidates"][0]["content"]["parts"][0]["text"]
        except (ValueError, KeyError, IndexError, TypeError) as e:
            raise AnalysisError("empty or malformed reply from the analysis service") from e
        if not text:
            raise AnalysisError("empty reply from the analysis service")
        try:
            return json.loads(text)
        except ValueError as e:
            logger.debug("Unparseable analysis text: %r", text)
            raise AnalysisError("analysis reply is not valid JSON") from e

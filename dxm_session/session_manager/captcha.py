"""Image-captcha recognition through a remote OCR provider."""

from __future__ import annotations

import asyncio
import base64
import logging
import re
import sys
import time
from typing import Optional, Protocol

from tencentcloud.common import credential
from tencentcloud.common.exception.tencent_cloud_sdk_exception import TencentCloudSDKException
from tencentcloud.common.profile.client_profile import ClientProfile
from tencentcloud.common.profile.http_profile import HttpProfile
from tencentcloud.ocr.v20181119 import models as ocr_models
from tencentcloud.ocr.v20181119 import ocr_client

from ..config import load_ocr_settings
from ..constants import CAPTCHA_EMPTY_TEXT, CAPTCHA_NO_TEXT, OCR_SOURCE
from ..models.session import RecognitionResult
from .errors import RecognitionError

logger = logging.getLogger(__name__)
if not logger.handlers:
    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(logging.Formatter("%(asctime)s [%(name)s] %(levelname)s: %(message)s"))
    logger.addHandler(handler)
    logger.setLevel(logging.INFO)

_NON_ALNUM = re.compile(r"[^a-zA-Z0-9]")


class OcrProvider(Protocol):
    """Remote OCR backend: base64 image in, (text, confidence) fragments out."""

    source: str

    async def recognize(self, image_base64: str) -> list[tuple[str, int]]: ...


class TencentOcrProvider:
    """Tencent Cloud GeneralBasicOCR."""

    source = OCR_SOURCE

    def __init__(
        self,
        secret_id: str,
        secret_key: str,
        region: str = "ap-beijing",
        endpoint: str = "ocr.tencentcloudapi.com",
        timeout: int = 30,
    ):
        http_profile = HttpProfile()
        http_profile.endpoint = endpoint
        http_profile.reqTimeout = timeout
        client_profile = ClientProfile()
        client_profile.httpProfile = http_profile
        self._client = ocr_client.OcrClient(
            credential.Credential(secret_id, secret_key), region, client_profile
        )

    @classmethod
    def from_env(cls) -> "TencentOcrProvider":
        return cls(**load_ocr_settings())

    def _call(self, image_base64: str):
        request = ocr_models.GeneralBasicOCRRequest()
        request.ImageBase64 = image_base64
        request.IsPdf = False
        request.PdfPageNumber = 0
        request.IsWords = False
        return self._client.GeneralBasicOCR(request)

    async def recognize(self, image_base64: str) -> list[tuple[str, int]]:
        try:
            # The SDK is blocking; keep it off the event loop.
            response = await asyncio.to_thread(self._call, image_base64)
        except TencentCloudSDKException as e:
            raise RecognitionError(f"Tencent OCR request failed: {e}") from e
        except OSError as e:
            raise RecognitionError(f"Tencent OCR unreachable: {e}") from e

        detections = response.TextDetections or []
        fragments: list[tuple[str, int]] = []
        for detection in detections:
            try:
                fragments.append((detection.DetectedText or "", int(detection.Confidence or 0)))
            except (AttributeError, TypeError, ValueError) as e:
                raise RecognitionError(f"Malformed OCR detection: {detection!r}") from e
        return fragments


def aggregate_fragments(fragments: list[tuple[str, int]], source: str = "") -> RecognitionResult:
    """Fold provider fragments into a single cleaned, confidence-scored guess.

    Fragments with text and a non-zero confidence are concatenated in provider
    order and their confidences averaged (rounded half-up). Everything except
    ASCII letters and digits is stripped from the joined text.
    """
    if not fragments:
        return RecognitionResult(text=CAPTCHA_NO_TEXT, confidence=0, source=source, detection_count=0)

    text = ""
    total = 0
    counted = 0
    for fragment_text, confidence in fragments:
        if fragment_text and confidence > 0:
            text += fragment_text
            total += confidence
            counted += 1

    cleaned = _NON_ALNUM.sub("", text)
    average = int(total / counted + 0.5) if counted else 0
    return RecognitionResult(
        text=cleaned or CAPTCHA_EMPTY_TEXT,
        confidence=max(0, min(100, average)),
        source=source,
        detection_count=len(fragments),
    )


class CaptchaSolver:
    """Turns a captcha screenshot into a RecognitionResult.

    Low confidence is a normal result; only provider faults raise
    RecognitionError.
    """

    def __init__(self, provider: Optional[OcrProvider] = None):
        self._provider = provider or TencentOcrProvider.from_env()

    async def solve(self, image: bytes) -> RecognitionResult:
        if not image:
            raise RecognitionError("Empty captcha image")

        image_base64 = base64.b64encode(image).decode("ascii")
        started = time.monotonic()
        logger.info("Sending captcha (%d bytes) to %s", len(image), self._provider.source)

        try:
            fragments = await self._provider.recognize(image_base64)
        except RecognitionError as e:
            logger.error(f"OCR provider failed: {e}")
            raise

        try:
            result = aggregate_fragments(list(fragments), source=self._provider.source)
        except (TypeError, ValueError) as e:
            logger.error(f"Malformed OCR response: {fragments!r}")
            raise RecognitionError(f"Malformed OCR response: {e}") from e
        logger.info(
            "OCR done in %dms: '%s' (confidence %d%%, %d detections)",
            int((time.monotonic() - started) * 1000),
            result.text,
            result.confidence,
            result.detection_count,
        )
        return result

import base64
import json
import re
from datetime import date
from typing import Dict, Iterable, Optional, Union

import requests
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from vale_audit.errors import PermanentOracleError, TransientOracleError
from vale_audit.ocr_models import Extraction, FieldReading, QualityCheck
from vale_audit.outcome import Ok, ParseError, ShapeError
from vale_audit.prompts import build_extraction_prompt, build_quality_prompt

RETRY_INFO_TYPE = "type.googleapis.com/google.rpc.RetryInfo"


class FieldPayload(BaseModel):
    model_config = ConfigDict(extra="ignore")

    valor: str = ""
    confianza: float = Field(0.0, ge=0.0, le=1.0)

    @field_validator("valor", mode="before")
    @classmethod
    def _numbers_as_text(cls, v):
        # the model sometimes answers m3 as a bare number
        if v is None:
            return ""
        if isinstance(v, (int, float)) and not isinstance(v, bool):
            return str(v)
        return v


class ExtractionPayload(BaseModel):
    numeroVale: FieldPayload
    placa: FieldPayload
    m3: FieldPayload
    fecha: FieldPayload

    def to_extraction(self) -> Extraction:
        def _reading(p: FieldPayload) -> FieldReading:
            return FieldReading(value=p.valor.strip(), confidence=p.confianza)

        return Extraction(
            numero_vale=_reading(self.numeroVale),
            placa=_reading(self.placa),
            m3=_reading(self.m3),
            fecha=_reading(self.fecha),
        )


class QualityPayload(BaseModel):
    qualityScore: float = Field(ge=0, le=10)
    isReadable: bool
    reason: str = ""

    def to_quality_check(self) -> QualityCheck:
        return QualityCheck(self.qualityScore, self.isReadable, self.reason)


DecodedExtraction = Union[Ok[Extraction], ParseError, ShapeError]
DecodedQuality = Union[Ok[QualityCheck], ParseError, ShapeError]


def strip_code_fences(text: str) -> str:
    """Remove ```json ... ``` wrapping that models add despite being told not to"""
    cleaned = (text or "").strip()
    if cleaned.startswith("```"):
        cleaned = re.sub(r"^```[a-zA-Z]*\s*", "", cleaned)
        cleaned = re.sub(r"\s*```\s*$", "", cleaned)
    return cleaned.strip()


def _decode(text: str, model):
    cleaned = strip_code_fences(text)
    try:
        data = json.loads(cleaned)
    except json.JSONDecodeError as e:
        return ParseError(raw_text=cleaned, reason=str(e))
    try:
        return Ok(model.model_validate(data))
    except ValidationError as e:
        return ShapeError(raw_text=cleaned, reason=str(e))


def decode_extraction(text: str) -> DecodedExtraction:
    decoded = _decode(text, ExtractionPayload)
    if isinstance(decoded, Ok):
        return Ok(decoded.value.to_extraction())
    return decoded


def decode_quality(text: str) -> DecodedQuality:
    decoded = _decode(text, QualityPayload)
    if isinstance(decoded, Ok):
        return Ok(decoded.value.to_quality_check())
    return decoded


def parse_retry_delay(body: Dict) -> Optional[float]:
    """Seconds from a google.rpc.RetryInfo detail ("37s"), if present"""
    error = body.get("error") if isinstance(body, dict) else None
    details = error.get("details") if isinstance(error, dict) else None
    if not isinstance(details, list):
        return None
    for detail in details:
        if not isinstance(detail, dict) or detail.get("@type") != RETRY_INFO_TYPE:
            continue
        m = re.match(r"^(\d+(?:\.\d+)?)s$", str(detail.get("retryDelay", "")))
        if m:
            return float(m.group(1))
    return None


class GeminiClient:
    """Gemini generateContent REST client"""

    def __init__(self, api_key: str, model: str = "gemini-1.5-flash", timeout: int = 120):
        self.api_key = api_key
        self.model = model
        self.timeout = timeout
        self.base_url = "https://generativelanguage.googleapis.com/v1beta"
        self.headers = {"content-type": "application/json"}

    def generate(self, prompt: str, image: bytes, mime_type: str = "image/jpeg") -> str:
        """Send prompt + image and return the concatenated text of the first candidate

        Raises:
            TransientOracleError: 429 / 5xx
            PermanentOracleError: any other failure status or transport error
        """
        url = f"{self.base_url}/models/{self.model}:generateContent"
        data = {
            "contents": [{
                "role": "user",
                "parts": [
                    {"text": prompt},
                    {"inline_data": {"mime_type": mime_type, "data": base64.b64encode(image).decode("ascii")}},
                ],
            }],
            "generationConfig": {"temperature": 0.1},
        }

        try:
            response = requests.post(url, headers=self.headers, params={"key": self.api_key},
                                     json=data, timeout=self.timeout)
        except requests.exceptions.RequestException as e:
            raise PermanentOracleError(f"Gemini request failed: {e}") from e

        if response.status_code == 429 or 500 <= response.status_code < 600:
            body = self._json_or_empty(response)
            raise TransientOracleError(
                f"Gemini returned {response.status_code}",
                status=response.status_code,
                retry_delay=parse_retry_delay(body) if response.status_code == 429 else None,
                details={"body": body},
            )
        if response.status_code >= 400:
            raise PermanentOracleError(
                f"Gemini returned {response.status_code}",
                status=response.status_code,
                details={"body": self._json_or_empty(response) or response.text[:500]},
            )

        candidates = self._json_or_empty(response).get("candidates") or []
        if not candidates:
            return ""
        parts = candidates[0].get("content", {}).get("parts") or []
        return "".join(p.get("text", "") for p in parts)

    @staticmethod
    def _json_or_empty(response) -> Dict:
        try:
            body = response.json()
        except ValueError:
            return {}
        return body if isinstance(body, dict) else {}


class GeminiOracle:
    """Vale-specific calls on top of GeminiClient; returns raw model text"""

    def __init__(self, client: GeminiClient, quality_min_score: int = 7):
        self.client = client
        self.quality_min_score = quality_min_score

    def extract(self, image: bytes, reference_values: Dict[str, str],
                valid_plates: Iterable[str], today: Optional[date] = None) -> str:
        prompt = build_extraction_prompt(list(valid_plates or []), reference_values, today)
        return self.client.generate(prompt, image)

    def check_quality(self, image: bytes) -> str:
        return self.client.generate(build_quality_prompt(self.quality_min_score), image)

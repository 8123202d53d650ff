"""Prefill record fields from a photo of a loom display.

The image is sent to an OpenAI vision model which returns the readings as
JSON.  Durations are normalised to ``HH:MM`` before they reach the form.
"""

from __future__ import annotations

import base64
import json
import os
import re
from dataclasses import dataclass
from typing import Any

from openai import OpenAI

from efficiency.durations import normalize_duration
from efficiency.models import coerce_int, coerce_number

DEFAULT_VISION_MODEL = "gpt-4o-mini"
MAX_COMPLETION_TOKENS = 500

_DATA_URI = re.compile(r"^data:(?P<media>[\w.+-]+/[\w.+-]+);base64,(?P<data>.+)$", re.DOTALL)

_MEDIA_TYPES = {
    ".png": "image/png",
    ".jpg": "image/jpeg",
    ".jpeg": "image/jpeg",
    ".webp": "image/webp",
}

PROMPT = """You are reading the display of a weaving loom in a textile factory.
Extract the following values as JSON (no markdown fences):
{
  "weftMeter": number,      // "Cloth length" on the display
  "stops": number,          // "All stops"
  "totalTime": "HH:MM",     // "Total Time"
  "runTime": "HH:MM",       // "Run time len"
  "machineNumber": "text",  // steel plate near the display or on screen
  "time": "HH:MM" or null   // clock shown on the display, if any
}
Return ONLY the JSON object. Use 0 or "00:00" for values you cannot read."""


class ExtractionError(RuntimeError):
    """Raised when a photo cannot be turned into record fields."""


@dataclass(frozen=True)
class ExtractedFields:
    weft_meter: float = 0.0
    stops: int = 0
    total_time: str = "00:00"
    run_time: str = "00:00"
    machine_number: str = ""
    time: str | None = None

    @classmethod
    def from_response(cls, data: Any) -> "ExtractedFields":
        if not isinstance(data, dict):
            raise ExtractionError("Vision response was not a JSON object.")

        def pick(*names):
            for name in names:
                if data.get(name) not in (None, ""):
                    return data[name]
            return None

        machine = pick("machineNumber", "machine_number")
        reading_time = pick("time")
        return cls(
            weft_meter=coerce_number(pick("weftMeter", "weft_meter")),
            stops=max(coerce_int(pick("stops")), 0),
            total_time=normalize_duration(pick("totalTime", "total_time")),
            run_time=normalize_duration(pick("runTime", "run_time")),
            machine_number=str(machine).strip() if machine is not None else "",
            time=normalize_duration(reading_time) if reading_time else None,
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "weft_meter": self.weft_meter,
            "stops": self.stops,
            "total_time": self.total_time,
            "run_time": self.run_time,
            "machine_number": self.machine_number,
            "time": self.time,
        }


def image_media_type(filename: str | None) -> str:
    """Return MIME media type for an image file name."""
    ext = os.path.splitext(filename or "")[1].lower()
    return _MEDIA_TYPES.get(ext, "image/jpeg")


def to_data_uri(content: bytes, media_type: str = "image/jpeg") -> str:
    encoded = base64.b64encode(content).decode("utf-8")
    return f"data:{media_type};base64,{encoded}"


def _parse_json(raw: str) -> Any:
    raw = raw.strip()
    # Strip markdown fences if present
    raw = re.sub(r"^```(?:json)?\s*", "", raw)
    raw = re.sub(r"\s*```$", "", raw)
    try:
        return json.loads(raw)
    except json.JSONDecodeError as exc:
        raise ExtractionError(f"Could not parse response: {raw[:200]}") from exc


def extract_efficiency_data(
    photo_data_uri: str,
    *,
    api_key: str | None = None,
    model_name: str | None = None,
) -> ExtractedFields:
    """Send one display photo to the vision model and return the readings."""

    if not photo_data_uri or not _DATA_URI.match(photo_data_uri.strip()):
        raise ExtractionError("Photo must be a base64 data URI (data:<mimetype>;base64,<data>).")

    api_key = api_key or os.environ.get("OPENAI_API_KEY")
    if not api_key:
        raise ExtractionError("No vision API key configured. Set OPENAI_API_KEY or save one in settings.")

    client = OpenAI(api_key=api_key)
    model_name = model_name or os.environ.get("OPENAI_VISION_MODEL", DEFAULT_VISION_MODEL)
    messages = [{
        "role": "user",
        "content": [
            {"type": "text", "text": PROMPT},
            {"type": "image_url", "image_url": {"url": photo_data_uri.strip()}},
        ],
    }]

    try:
        resp = client.chat.completions.create(
            model=model_name,
            messages=messages,
            temperature=0.1,
            max_completion_tokens=MAX_COMPLETION_TOKENS,
        )
        raw = resp.choices[0].message.content or ""
    except Exception as exc:
        raise ExtractionError(f"Vision request failed: {exc}") from exc

    return ExtractedFields.from_response(_parse_json(raw))

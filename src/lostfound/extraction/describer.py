"""Structured description of a found item from its image and category."""

from __future__ import annotations

import json
import logging
import re
from typing import Dict, List

from lostfound.errors import DescriptionError, MalformedResponseError
from lostfound.services.vision_client import VisionChatClient, strip_code_fence
from lostfound.settings import Settings, get_settings
from lostfound.storage.images import ImageHandle
from lostfound.store.schema import DETAIL_FIELDS, ItemDetails, ParsedDetails, UnparsedDetails
from lostfound.store.usage_store import UsageRecorder

LOGGER = logging.getLogger(__name__)

DESCRIBE_PROMPT = (
    "Describe the key characteristics of a lost {classification} as seen in this image. "
    "Respond in JSON with fields: item_type, color, brand (if visible), distinguishing_features, condition."
)

_MOCK_COLORS = ("black", "white", "red", "blue", "green", "brown", "grey", "gray", "pink", "silver", "gold", "yellow")
_MOCK_BRANDS = ("gucci", "apple", "samsung", "nike", "adidas", "sony", "rayban", "prada", "casio", "bose")


def parse_details(text: str) -> ParsedDetails:
    """Parse a describer reply into :class:`ParsedDetails`.

    Raises:
        MalformedResponseError: the reply is not a JSON object.
    """

    payload = strip_code_fence(text)
    try:
        data = json.loads(payload)
    except json.JSONDecodeError as exc:
        match = re.search(r"\{.*\}", payload, re.DOTALL)
        if not match:
            raise MalformedResponseError(f"Describer reply is not JSON: {exc}", raw_text=text) from exc
        try:
            data = json.loads(match.group(0))
        except json.JSONDecodeError as inner:
            raise MalformedResponseError(f"Describer reply is not JSON: {inner}", raw_text=text) from inner
    if not isinstance(data, dict):
        raise MalformedResponseError("Describer reply is not a JSON object", raw_text=text)
    return ParsedDetails(fields=data)


class ItemDescriber:
    """Ask the vision model for item attributes and keep unparseable replies verbatim."""

    def __init__(
        self,
        *,
        settings: Settings | None = None,
        usage_recorder: UsageRecorder | None = None,
        vision_client: VisionChatClient | None = None,
    ) -> None:
        self.settings = settings or get_settings()
        self.provider = self.settings.llm.provider
        self._vision = vision_client
        if self._vision is None and self.provider != "mock":
            self._vision = VisionChatClient(settings=self.settings, usage_recorder=usage_recorder)

    def describe(self, image: ImageHandle, label: str) -> ItemDetails:
        """Return parsed attributes, or :class:`UnparsedDetails` for a malformed reply.

        Raises:
            DescriptionError: the model call failed or timed out.
        """

        if self._vision is None:
            content = self._mock_describe(image, label)
        else:
            prompt = DESCRIBE_PROMPT.format(classification=label)
            try:
                content = self._vision.invoke(prompt, image, function_name="complete")
            except Exception as exc:
                raise DescriptionError(
                    f"Describer call failed for {image.filename}: {exc}", filename=image.filename, original_error=exc
                ) from exc

        try:
            return parse_details(content)
        except MalformedResponseError as exc:
            LOGGER.warning("Describer returned unparseable payload for %s: %s", image.filename, exc)
            return UnparsedDetails(raw_text=exc.raw_text, parse_error=str(exc))

    def _mock_describe(self, image: ImageHandle, label: str) -> str:
        tokens: List[str] = re.split(r"[^a-z0-9]+", image.filename.lower())
        color = next((token for token in tokens if token in _MOCK_COLORS), "unknown")
        brand = next((token.capitalize() for token in tokens if token in _MOCK_BRANDS), "")
        fields: Dict[str, str] = dict.fromkeys(DETAIL_FIELDS, "")
        fields.update(
            item_type=label,
            color=color,
            brand=brand,
            distinguishing_features=f"{color} {label}".strip(),
            condition="good",
        )
        return json.dumps(fields)


__all__ = ["DESCRIBE_PROMPT", "ItemDescriber", "parse_details"]

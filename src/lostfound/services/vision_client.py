"""Shared chat client for image prompts sent to the configured vision model."""

from __future__ import annotations

import base64
import logging

from langchain_core.messages import HumanMessage

from lostfound.settings import Settings, get_settings
from lostfound.storage.images import ImageHandle
from lostfound.store.schema import utcnow
from lostfound.store.usage_store import UsageRecorder

LOGGER = logging.getLogger(__name__)


def strip_code_fence(text: str) -> str:
    stripped = text.strip()
    if stripped.startswith("```") and stripped.endswith("```"):
        lines = stripped.splitlines()
        if len(lines) >= 2:
            return "\n".join(lines[1:-1]).strip()
    return stripped


def image_message(prompt: str, image: ImageHandle) -> HumanMessage:
    """Build a multimodal message carrying ``prompt`` and the image as a data URI."""

    encoded = base64.b64encode(image.data).decode("ascii")
    return HumanMessage(
        content=[
            {"type": "text", "text": prompt},
            {"type": "image_url", "image_url": f"data:{image.content_type};base64,{encoded}"},
        ]
    )


class VisionChatClient:
    """Invoke the vision model and account for each call in ``ai_usage``."""

    def __init__(
        self,
        *,
        settings: Settings | None = None,
        usage_recorder: UsageRecorder | None = None,
        client=None,
    ) -> None:
        self.settings = settings or get_settings()
        self.model_name = self.settings.llm.vision_model
        self._usage = usage_recorder
        self._client = client or self._build_client()

    def _build_client(self):
        if self.settings.llm.provider != "ollama":
            raise RuntimeError(f"Vision calls require the 'ollama' provider, got '{self.settings.llm.provider}'")

        from langchain_ollama import ChatOllama

        return ChatOllama(
            model=self.model_name,
            base_url=self.settings.llm.ollama_base_url,
            temperature=self.settings.llm.temperature,
            client_kwargs={"timeout": self.settings.llm.request_timeout_seconds},
        )

    def invoke(self, prompt: str, image: ImageHandle, *, function_name: str) -> str:
        """Send ``prompt`` with ``image`` and return the text content of the reply."""

        started_at = utcnow()
        response = self._client.invoke([image_message(prompt, image)])
        ended_at = utcnow()
        usage = getattr(response, "usage_metadata", None) or {}
        tokens = int(usage.get("total_tokens") or 0)
        if self._usage is not None:
            self._usage.record(
                function_name=function_name,
                model_name=self.model_name,
                tokens=tokens,
                started_at=started_at,
                ended_at=ended_at,
                subject=image.filename,
            )
        content = getattr(response, "content", "")
        if isinstance(content, list):
            content = "".join(part.get("text", "") if isinstance(part, dict) else str(part) for part in content)
        LOGGER.debug("Vision call function=%s file=%s tokens=%d", function_name, image.filename, tokens)
        return str(content or "")


__all__ = ["VisionChatClient", "image_message", "strip_code_fence"]

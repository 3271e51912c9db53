"""Image classifier mapping a found-item photo to one vocabulary label."""

from __future__ import annotations

import hashlib
import logging
import re
from dataclasses import dataclass, field
from typing import List, Sequence

from lostfound.classification.vocabulary import CATEGORY_LABELS, canonical_label
from lostfound.errors import ClassificationError
from lostfound.services.vision_client import VisionChatClient, strip_code_fence
from lostfound.settings import Settings, get_settings
from lostfound.storage.images import ImageHandle
from lostfound.store.usage_store import UsageRecorder

LOGGER = logging.getLogger(__name__)

CLASSIFY_PROMPT = (
    "Classify the lost item shown in this image. "
    "Answer with exactly one label from this list and nothing else: {labels}."
)


@dataclass(slots=True)
class ClassificationResult:
    """Top label plus every vocabulary label the model mentioned, best first."""

    label: str
    labels: List[str] = field(default_factory=list)


def rank_labels(text: str, vocabulary: Sequence[str]) -> List[str]:
    """Return vocabulary labels found in ``text`` ordered by first appearance.

    Longer labels win over labels they contain, so ``"sunglasses case"`` is not
    also reported as ``"sunglasses"``.
    """

    lowered = text.lower()
    hits: list[tuple[int, int, str]] = []
    for label in vocabulary:
        pattern = r"(?<![a-z])" + re.escape(label.lower()) + r"(?![a-z])"
        match = re.search(pattern, lowered)
        if match:
            hits.append((match.start(), match.end(), label))
    hits.sort(key=lambda hit: (hit[0], -(hit[1] - hit[0])))
    ranked: List[str] = []
    covered_until = -1
    for start, end, label in hits:
        if start < covered_until:
            continue
        ranked.append(label)
        covered_until = end
    return ranked


class ImageClassifier:
    """Classify item images with the configured provider."""

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

    def classify(self, image: ImageHandle, vocabulary: Sequence[str] = CATEGORY_LABELS) -> ClassificationResult:
        """Return the highest-ranked label for ``image``.

        Raises:
            ClassificationError: the model call failed or named no known label.
        """

        if self._vision is None:
            return self._mock_classify(image, vocabulary)

        prompt = CLASSIFY_PROMPT.format(labels=", ".join(vocabulary))
        try:
            content = self._vision.invoke(prompt, image, function_name="classify")
        except Exception as exc:
            raise ClassificationError(
                f"Classifier call failed for {image.filename}: {exc}", filename=image.filename, original_error=exc
            ) from exc

        answer = strip_code_fence(content)
        exact = canonical_label(answer.strip(" .\"'"))
        labels = rank_labels(answer, vocabulary)
        if exact and exact in vocabulary:
            labels = [exact] + [label for label in labels if label != exact]
        if not labels:
            raise ClassificationError(
                f"Classifier answer for {image.filename} named no known label: {answer[:200]!r}",
                filename=image.filename,
            )
        LOGGER.debug("Classified %s as %s", image.filename, labels[0])
        return ClassificationResult(label=labels[0], labels=labels)

    def _mock_classify(self, image: ImageHandle, vocabulary: Sequence[str]) -> ClassificationResult:
        hint = re.sub(r"[_\-.]+", " ", image.filename)
        labels = rank_labels(hint, vocabulary)
        if labels:
            return ClassificationResult(label=labels[0], labels=labels)
        digest = hashlib.sha256(image.data or image.filename.encode("utf-8")).digest()
        label = vocabulary[digest[0] % len(vocabulary)]
        return ClassificationResult(label=label, labels=[label])


__all__ = ["CLASSIFY_PROMPT", "ClassificationResult", "ImageClassifier", "rank_labels"]

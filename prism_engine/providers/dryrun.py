"""Dry-run provider adapter (offline)."""

from __future__ import annotations

import hashlib
import io
import json
from typing import Any, Sequence

from PIL import Image, ImageDraw, ImageFont

from ..credentials.store import Credential
from ..modes import GroundingSource, ImageData
from .base import AsyncOperation, GeneratedMedia, LinkedRecipe, OperationState, StructuredArticle
from .errors import EmptyResultError
from .google_utils import TTS_SAMPLE_RATE, pcm_to_wav


class DryRunAdapter:
    name = "dryrun"

    def __init__(self, *, size: tuple[int, int] = (512, 512), video_polls: int = 2) -> None:
        self.size = size
        self.video_polls = max(0, int(video_polls))
        self._font = None

    async def generate_image(self, credential: Credential, prompt: str, image: ImageData | None) -> GeneratedMedia:
        label = "edit" if image is not None else "image"
        return GeneratedMedia(data=self._render(prompt, label), mime_type="image/png")

    async def generate_product_shot(
        self,
        credential: Credential,
        prompt: str,
        product_images: Sequence[ImageData],
        inspiration: ImageData | None,
    ) -> list[GeneratedMedia]:
        if not product_images:
            raise EmptyResultError("Product shot generation failed to produce images.")
        return [
            GeneratedMedia(data=self._render(f"{prompt} #{idx + 1}", "product"), mime_type="image/png")
            for idx in range(len(product_images))
        ]

    async def analyze_image(self, credential: Credential, image: ImageData) -> str:
        return "a person reading a newspaper"

    async def generate_recipe(self, credential: Credential, prompt: str) -> str:
        return _recipe_text(prompt)

    async def generate_recipe_from_link(self, credential: Credential, url: str) -> LinkedRecipe:
        return LinkedRecipe(
            text=_recipe_text(f"recipe from {url}"),
            sources=(GroundingSource(uri=url, title="Source page"),),
            image_url=None,
        )

    async def generate_recipe_card(self, credential: Credential, url: str) -> dict[str, Any]:
        return {
            "title": "Dry-run recipe",
            "description": f"Recipe card extracted from {url}.",
            "imageUrl": None,
            "prepTime": "10 min",
            "cookTime": "20 min",
            "servings": 2,
            "ingredients": ["1 cup placeholder", "2 pinches of salt"],
            "instructions": ["Combine everything.", "Cook until done."],
            "notes": ["Generated offline."],
        }

    async def generate_speech(self, credential: Credential, text: str, voice: str) -> GeneratedMedia:
        # A tenth of a second of silence per word.
        frames = max(1, len(text.split())) * (TTS_SAMPLE_RATE // 10)
        return GeneratedMedia(data=pcm_to_wav(b"\x00\x00" * frames), mime_type="audio/wav")

    async def generate_structured_article(
        self,
        credential: Credential,
        url: str,
        keyword: str,
        language: str,
    ) -> StructuredArticle:
        slug = "-".join(keyword.lower().split())
        meta = {
            "titleSEO": keyword.title()[:60],
            "metaDescription": f"Everything about {keyword}. Read more."[:160],
            "urlSlug": slug,
        }
        html = f"<h1>{keyword}</h1><p>{keyword} ({language}), based on {url}.</p>"
        content = json.dumps({"metaElements": meta, "blogPostHtml": html})
        return StructuredArticle(content=content, meta=meta, html=html, image_url=None)

    async def translate_text(self, credential: Credential, text: str, target_language: str, stylize: bool) -> str:
        marker = f"{target_language}, stylized" if stylize else target_language
        return f"[{marker}] {text}"

    async def submit_video(self, credential: Credential, prompt: str, image: ImageData | None) -> AsyncOperation:
        digest = hashlib.sha256(prompt.encode("utf-8")).hexdigest()[:12]
        state = OperationState.DONE if self.video_polls == 0 else OperationState.SUBMITTED
        return AsyncOperation(name=f"dryrun-video-{digest}", state=state, native={"prompt": prompt})

    async def poll_video(self, credential: Credential, operation: AsyncOperation) -> AsyncOperation:
        return operation.advanced(done=operation.polls + 1 >= self.video_polls)

    async def download_video(self, credential: Credential, operation: AsyncOperation) -> GeneratedMedia:
        if operation.state is not OperationState.DONE:
            raise RuntimeError(f"Operation {operation.name} is not done.")
        prompt = str((operation.native or {}).get("prompt") or "")
        frames = [Image.open(io.BytesIO(self._render(prompt, f"frame {idx}"))) for idx in range(3)]
        buffer = io.BytesIO()
        frames[0].save(buffer, format="GIF", save_all=True, append_images=frames[1:], duration=200, loop=0)
        return GeneratedMedia(data=buffer.getvalue(), mime_type="image/gif")

    def _render(self, prompt: str, label: str) -> bytes:
        image = Image.new("RGB", self.size, _color_from_prompt(f"{prompt}:{label}"))
        draw = ImageDraw.Draw(image)
        font = self._font or ImageFont.load_default()
        draw.text((20, 20), f"dryrun {label}\n{prompt[:60]}", fill=(255, 255, 255), font=font)
        buffer = io.BytesIO()
        image.save(buffer, format="PNG")
        return buffer.getvalue()


def _recipe_text(prompt: str) -> str:
    return (
        f"Dry-run recipe: {prompt}\n\n"
        "Ingredients:\n- 1 cup placeholder\n- 2 pinches of salt\n\n"
        "Instructions:\n1. Combine everything.\n2. Cook until done."
    )


def _color_from_prompt(prompt: str) -> tuple[int, int, int]:
    digest = hashlib.sha256(prompt.encode("utf-8")).digest()
    return digest[0], digest[1], digest[2]

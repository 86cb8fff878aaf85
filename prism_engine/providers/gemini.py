"""Gemini provider adapter."""

from __future__ import annotations

from typing import Any, Sequence

from google import genai
from google.genai import types

from ..credentials.store import Credential
from ..models.registry import ModelRegistry
from ..modes import ImageData
from .base import AsyncOperation, GeneratedMedia, LinkedRecipe, OperationState, StructuredArticle
from .errors import EmptyResultError, UserInputError, classify_provider_error
from .google_utils import (
    extract_grounding_sources,
    extract_inline_blobs,
    extract_json_object,
    parse_image_url,
    pcm_to_wav,
    response_text,
)


PRODUCT_SHOT_INSTRUCTION = """You are an expert AI product photographer. The user has provided one or more images of a SINGLE product, likely from different angles. Your task is to use all these images to get a complete understanding of the product's shape, texture, and details. Then, create professional, high-quality product shots suitable for an e-commerce website.

Analyze the product images to identify all distinct products (there should only be one main product, but it might come in multiple pieces). For EACH product, generate a separate, individual image. If there is only one product, generate one image.

For each generated image, follow these rules:
- Place the product on a clean, neutral, solid-color background (e.g., white, light gray, or a complementary pastel color).
- Ensure the lighting is professional and even, highlighting the product's features without harsh shadows.
- The product should be in sharp focus.
- The composition should be centered and aesthetically pleasing.
- Do NOT add any props, text, logos, or other objects unless explicitly asked for in the user's prompt.
- If the user provides a specific request in the prompt, prioritize it while still following the general guidelines. For example, if they ask for a 'lifestyle' shot, you can add a relevant, subtle background.

The final output should be a collection of professional product images."""

ANALYZE_IMAGE_PROMPT = (
    "Analyze the provided image and suggest a specific type of person to add to it that would "
    "make contextual sense. For example, if it's a beach, suggest 'a surfer walking on the sand'. "
    "If it's a library, suggest 'a student reading a book'. The suggestion should be a concise phrase."
)

STYLIZE_INSTRUCTION = (
    "After translating, review and correct any grammatical errors. Also, adjust the style and tone "
    "to sound natural and fluent, as a native speaker would write it."
)

RECIPE_CARD_INVALID = "The API returned an invalid data format for the recipe card."
ARTICLE_EXTRACTION_EMPTY = "Could not extract content from the provided URL."

ARTICLE_SYSTEM_INSTRUCTION = """Role and objective:
You are an SEO blog writer. You receive a [PRIMARY_KEYWORD] and a [SOURCE_CONTENT].
Your mandatory process is:
1. Analyze: read and fully understand the [SOURCE_CONTENT].
2. Plan: use the [PRIMARY_KEYWORD] as the main keyword of the new post and pick secondary keywords from the [SOURCE_CONTENT].
3. Generate: write a 100% original blog post inspired by the [SOURCE_CONTENT] but refocused and optimized for the [PRIMARY_KEYWORD]. Never copy text verbatim.
4. Apply the SEO and readability rules below strictly.

SEO AND READABILITY RULES:
Language: write the post exclusively in {language}. Title, meta description and body must all be in {language}.

Meta elements (required):
- SEO title: under 60 characters, includes the [PRIMARY_KEYWORD].
- Meta description: under 160 characters, persuasive, includes the [PRIMARY_KEYWORD] and a call to action.
- URL slug: short, lowercase, hyphen-separated, based on the [PRIMARY_KEYWORD].

Structure and content (required):
- A single H1 (the post title) including the [PRIMARY_KEYWORD].
- The HTML body ('blogPostHtml') is at least 1500 characters long.
- H2 for main sections and H3 for sub-sections.
- The first paragraph is short and includes the [PRIMARY_KEYWORD] naturally.
- Very short paragraphs (3-4 lines at most), active voice.
- Use <strong> for key ideas and <ul><li>...</li></ul> lists where appropriate.
- Include placeholders for [Internal link: topic] and [External link: authority source].
- Close with a summary and a clear call to action.

Output format:
Always answer in JSON following the provided schema."""

ARTICLE_SCHEMA = {
    "type": "OBJECT",
    "properties": {
        "metaElements": {
            "type": "OBJECT",
            "properties": {
                "titleSEO": {"type": "STRING"},
                "metaDescription": {"type": "STRING"},
                "urlSlug": {"type": "STRING"},
            },
        },
        "blogPostHtml": {
            "type": "STRING",
            "description": "The complete blog post as HTML, starting with an <h1> tag.",
        },
    },
}

VIDEO_FALLBACK_ERROR = "Video generation failed without a provider message."


class GeminiAdapter:
    name = "gemini"

    def __init__(self, models: ModelRegistry | None = None) -> None:
        self.models = models or ModelRegistry()

    def _client(self, credential: Credential) -> genai.Client:
        if credential is None or not credential.secret:
            raise classify_provider_error(RuntimeError("API key is not configured."))
        return genai.Client(api_key=credential.secret)

    def _model(self, capability: str) -> str:
        return self.models.resolve(capability, self.name)

    async def _generate(self, credential: Credential, *, model: str, contents: Any, config: Any = None) -> Any:
        client = self._client(credential)
        try:
            return await client.aio.models.generate_content(model=model, contents=contents, config=config)
        except Exception as exc:
            raise classify_provider_error(exc) from exc

    async def generate_image(self, credential: Credential, prompt: str, image: ImageData | None) -> GeneratedMedia:
        parts: list[types.Part] = []
        if image is not None:
            parts.append(_image_part(image))
        parts.append(types.Part(text=prompt))
        response = await self._generate(
            credential,
            model=self._model("image"),
            contents=parts,
            config=types.GenerateContentConfig(response_modalities=["IMAGE"]),
        )
        blobs = extract_inline_blobs(getattr(response, "candidates", None) or [])
        if blobs:
            blob = blobs[0]
            return GeneratedMedia(data=blob["bytes"], mime_type=blob.get("mime_type") or "image/png")
        text = response_text(response)
        if text:
            raise EmptyResultError(f"Image generation failed: {text}")
        raise EmptyResultError("Image generation failed to produce an image.")

    async def generate_product_shot(
        self,
        credential: Credential,
        prompt: str,
        product_images: Sequence[ImageData],
        inspiration: ImageData | None,
    ) -> list[GeneratedMedia]:
        parts: list[types.Part] = [types.Part(text=PRODUCT_SHOT_INSTRUCTION)]
        if prompt.strip():
            parts.append(types.Part(text=f"User's specific request: {prompt.strip()}"))
        parts.extend(_image_part(img) for img in product_images)
        if inspiration is not None:
            parts.append(types.Part(text="Use this image for style inspiration:"))
            parts.append(_image_part(inspiration))
        response = await self._generate(
            credential,
            model=self._model("image"),
            contents=parts,
            config=types.GenerateContentConfig(response_modalities=["IMAGE"]),
        )
        blobs = extract_inline_blobs(getattr(response, "candidates", None) or [])
        if blobs:
            return [
                GeneratedMedia(data=blob["bytes"], mime_type=blob.get("mime_type") or "image/png")
                for blob in blobs
            ]
        text = response_text(response)
        if text:
            raise EmptyResultError(f"Product shot generation failed: {text}")
        raise EmptyResultError("Product shot generation failed to produce images.")

    async def analyze_image(self, credential: Credential, image: ImageData) -> str:
        response = await self._generate(
            credential,
            model=self._model("vision"),
            contents=[types.Part(text=ANALYZE_IMAGE_PROMPT), _image_part(image)],
        )
        text = response_text(response)
        if not text:
            raise EmptyResultError("Image analysis returned no suggestion.")
        return text

    async def generate_recipe(self, credential: Credential, prompt: str) -> str:
        contents = (
            f'Generate a recipe based on the following description: "{prompt}".\n'
            "Format the recipe clearly with a title, a brief introduction, a list of ingredients "
            "with quantities, and step-by-step instructions."
        )
        response = await self._generate(credential, model=self._model("text"), contents=contents)
        return _require_text(response, "Recipe generation returned no text.")

    async def generate_recipe_from_link(self, credential: Credential, url: str) -> LinkedRecipe:
        contents = (
            f"Find the recipe published at this URL: {url}. Rewrite it clearly with a title, "
            "a brief introduction, a list of ingredients with quantities, and step-by-step "
            "instructions. If the page holds no recipe, answer exactly: NO_RECIPE_FOUND"
        )
        response = await self._generate(
            credential,
            model=self._model("search"),
            contents=contents,
            config=_search_config(),
        )
        text = _require_text(response, "Recipe extraction returned no text.")
        if "NO_RECIPE_FOUND" in text:
            raise UserInputError("No recipe could be extracted from the provided URL.")
        image_url = await self._find_image_url(credential, url)
        return LinkedRecipe(text=text, sources=extract_grounding_sources(response), image_url=image_url)

    async def generate_recipe_card(self, credential: Credential, url: str) -> dict[str, Any]:
        contents = (
            f"Analyze the recipe from the URL: {url}. Extract the following information and return it "
            "as a JSON object: title, description (a short, one-sentence summary), the absolute URL of "
            "the main recipe image (imageUrl), prep time (prepTime), cook time (cookTime), total number "
            "of servings (servings), a list of ingredients (ingredients, as an array of strings), a list "
            "of instructions (instructions, as an array of strings), and any additional notes or tips "
            "(notes, as an array of strings)."
        )
        response = await self._generate(
            credential,
            model=self._model("structured"),
            contents=contents,
            config=_search_config(),
        )
        card = extract_json_object(response_text(response))
        if card is None:
            raise EmptyResultError(RECIPE_CARD_INVALID)
        return card

    async def generate_speech(self, credential: Credential, text: str, voice: str) -> GeneratedMedia:
        config = types.GenerateContentConfig(
            response_modalities=["AUDIO"],
            speech_config=types.SpeechConfig(
                voice_config=types.VoiceConfig(
                    prebuilt_voice_config=types.PrebuiltVoiceConfig(voice_name=voice),
                ),
            ),
        )
        response = await self._generate(
            credential,
            model=self._model("speech"),
            contents=[types.Part(text=text)],
            config=config,
        )
        blobs = extract_inline_blobs(getattr(response, "candidates", None) or [])
        if not blobs:
            raise EmptyResultError("Speech generation failed to produce audio.")
        return GeneratedMedia(data=pcm_to_wav(blobs[0]["bytes"]), mime_type="audio/wav")

    async def generate_structured_article(
        self,
        credential: Credential,
        url: str,
        keyword: str,
        language: str,
    ) -> StructuredArticle:
        extraction = await self._generate(
            credential,
            model=self._model("search"),
            contents=(
                "Please extract the main article content from the provided URL. Focus on the body of "
                f"the text, ignoring navigation, ads, and footers. The URL is: {url}"
            ),
            config=_search_config(),
        )
        source_content = response_text(extraction)
        if not source_content:
            raise UserInputError(ARTICLE_EXTRACTION_EMPTY)

        image_url = await self._find_image_url(credential, url)

        generation = await self._generate(
            credential,
            model=self._model("structured"),
            contents=f'PRIMARY KEYWORD: "{keyword}"\n\nSOURCE CONTENT:\n---\n{source_content}\n---',
            config=types.GenerateContentConfig(
                system_instruction=ARTICLE_SYSTEM_INSTRUCTION.format(language=language),
                response_mime_type="application/json",
                response_schema=ARTICLE_SCHEMA,
            ),
        )
        content = _require_text(generation, "Article generation returned no content.")
        payload = extract_json_object(content) or {}
        meta = payload.get("metaElements") if isinstance(payload.get("metaElements"), dict) else {}
        html = payload.get("blogPostHtml") if isinstance(payload.get("blogPostHtml"), str) else ""
        return StructuredArticle(content=content, meta=meta, html=html, image_url=image_url)

    async def translate_text(self, credential: Credential, text: str, target_language: str, stylize: bool) -> str:
        prompt = f"Translate the following text to {target_language}:\n\n---\n{text}\n---"
        if stylize:
            prompt += f"\n\n{STYLIZE_INSTRUCTION}"
        response = await self._generate(credential, model=self._model("text"), contents=prompt)
        return _require_text(response, "Translation returned no text.")

    async def submit_video(self, credential: Credential, prompt: str, image: ImageData | None) -> AsyncOperation:
        client = self._client(credential)
        kwargs: dict[str, Any] = {
            "model": self._model("video"),
            "prompt": prompt,
            "config": types.GenerateVideosConfig(number_of_videos=1),
        }
        if image is not None:
            kwargs["image"] = types.Image(image_bytes=image.data, mime_type=image.mime_type)
        try:
            native = await client.aio.models.generate_videos(**kwargs)
        except Exception as exc:
            raise classify_provider_error(exc) from exc
        name = str(getattr(native, "name", "") or "video")
        if getattr(native, "done", False):
            error = _operation_error(native)
            state = OperationState.FAILED if error else OperationState.DONE
            return AsyncOperation(name=name, state=state, error=error, native=native)
        return AsyncOperation(name=name, native=native)

    async def poll_video(self, credential: Credential, operation: AsyncOperation) -> AsyncOperation:
        client = self._client(credential)
        try:
            native = await client.aio.operations.get(operation.native)
        except Exception as exc:
            raise classify_provider_error(exc) from exc
        return operation.advanced(
            done=bool(getattr(native, "done", False)),
            error=_operation_error(native),
            native=native,
        )

    async def download_video(self, credential: Credential, operation: AsyncOperation) -> GeneratedMedia:
        if operation.state is not OperationState.DONE:
            raise RuntimeError(f"Operation {operation.name} is not done.")
        response = getattr(operation.native, "response", None) or getattr(operation.native, "result", None)
        videos = getattr(response, "generated_videos", None) or []
        video = getattr(videos[0], "video", None) if videos else None
        if video is None:
            raise EmptyResultError("Video generation completed, but no video was returned.")
        data = getattr(video, "video_bytes", None)
        if not data:
            client = self._client(credential)
            try:
                data = await client.aio.files.download(file=video)
            except Exception as exc:
                raise classify_provider_error(exc) from exc
        if not data:
            raise EmptyResultError("Video download returned no data.")
        return GeneratedMedia(data=bytes(data), mime_type=getattr(video, "mime_type", None) or "video/mp4")

    async def _find_image_url(self, credential: Credential, url: str) -> str | None:
        response = await self._generate(
            credential,
            model=self._model("search"),
            contents=(
                f"From the content of the URL {url}, what is the absolute URL of the primary, main "
                "product or article image? Return only the URL and nothing else."
            ),
            config=_search_config(),
        )
        return parse_image_url(response_text(response))


def _image_part(image: ImageData) -> types.Part:
    return types.Part(inline_data=types.Blob(data=image.data, mime_type=image.mime_type))


def _search_config() -> types.GenerateContentConfig:
    return types.GenerateContentConfig(tools=[types.Tool(google_search=types.GoogleSearch())])


def _require_text(response: Any, empty_message: str) -> str:
    text = response_text(response)
    if not text:
        raise EmptyResultError(empty_message)
    return text


def _operation_error(native: Any) -> str | None:
    error = getattr(native, "error", None)
    if not error:
        return None
    if isinstance(error, dict):
        return str(error.get("message") or error) or VIDEO_FALLBACK_ERROR
    return str(getattr(error, "message", None) or error) or VIDEO_FALLBACK_ERROR

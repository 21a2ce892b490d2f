"""
Provider adapters.

Every provider implements the same pair:
    submit(payload)  -> Submission (provider task handle)
    resolve(task_id) -> Resolution (pending | succeeded(url) | failed(message))

How a submitted task gets resolved is the adapter's `resolution_mode`:
POLL (worker calls resolve on an interval) or CALLBACK (provider POSTs to
/api/queue/callback later). Synchronous providers return an already settled
resolution from submit. Result references are either remote URLs (short
expiry, fetch immediately) or inline `data:` URLs.
"""

import json
import logging
import uuid
from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Dict, List, Optional

import requests

from genqueue.errors import InvalidInput, ProviderSubmitFailed
from genqueue.exchange import AssetExchange, publish_data_url
from genqueue.jobqueue import QueuedPayload
from genqueue.settings import settings

logger = logging.getLogger(__name__)


class ResolutionMode(str, Enum):
    POLL = "poll"
    CALLBACK = "callback"


class Outcome(str, Enum):
    PENDING = "pending"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


@dataclass(frozen=True)
class Resolution:
    outcome: Outcome
    result_url: Optional[str] = None  # remote URL or data: URL
    error: Optional[str] = None

    @classmethod
    def pending(cls) -> "Resolution":
        return cls(Outcome.PENDING)

    @classmethod
    def succeeded(cls, result_url: str) -> "Resolution":
        return cls(Outcome.SUCCEEDED, result_url=result_url)

    @classmethod
    def failed(cls, error: str) -> "Resolution":
        return cls(Outcome.FAILED, error=error)

    @property
    def settled(self) -> bool:
        return self.outcome is not Outcome.PENDING


@dataclass(frozen=True)
class Submission:
    task_id: str
    resolution: Optional[Resolution] = None  # set by synchronous providers


class ProviderAdapter(ABC):
    name: str = "provider"
    resolution_mode: ResolutionMode = ResolutionMode.POLL

    @abstractmethod
    def submit(self, payload: QueuedPayload) -> Submission:
        """Start generation. Raises ProviderSubmitFailed."""

    @abstractmethod
    def resolve(self, task_id: str) -> Resolution:
        """
        Ask the provider where `task_id` stands. Network errors and malformed
        bodies propagate (requests.RequestException / ValueError); the poll
        loop counts them as used attempts.
        """

    def check_input(self, model: str, input_refs: List[str]) -> None:
        """Admission-time validation hook; raise InvalidInput."""


# ---------- KIE.ai (z-image, grok, qwen, seedream, background removal) ----------

def _text_input(prompt: str, images: List[str]) -> Dict:
    return {"prompt": prompt, "aspect_ratio": "3:4"}


def _qwen_input(prompt: str, images: List[str]) -> Dict:
    return {
        "prompt": prompt,
        "image_size": "portrait_4_3",
        "num_inference_steps": 30,
        "guidance_scale": 2.5,
        "enable_safety_checker": True,
        "output_format": "png",
        "acceleration": "none",
    }


def _qwen_edit_input(prompt: str, images: List[str]) -> Dict:
    return {"prompt": prompt, "image_url": images[0], "output_format": "png", "enable_safety_checker": True}


def _seedream_input(prompt: str, images: List[str]) -> Dict:
    return {"prompt": prompt, "aspect_ratio": "3:4", "quality": "basic"}


def _seedream_edit_input(prompt: str, images: List[str]) -> Dict:
    return {"prompt": prompt, "image_urls": images, "aspect_ratio": "3:4", "quality": "basic"}


def _remove_background_input(prompt: str, images: List[str]) -> Dict:
    return {"image": images[0]}


@dataclass(frozen=True)
class KieModel:
    remote_name: str
    build_input: Callable[[str, List[str]], Dict]
    needs_image: bool = False


KIE_MODELS: Dict[str, KieModel] = {
    "zimage": KieModel("z-image", _text_input),
    "grok": KieModel("grok-imagine/text-to-image", _text_input),
    "qwen": KieModel("qwen/text-to-image", _qwen_input),
    "qwen-edit": KieModel("qwen/image-edit", _qwen_edit_input, needs_image=True),
    "seedream": KieModel("seedream/4.5-text-to-image", _seedream_input),
    "seedream-edit": KieModel("seedream/4.5-edit", _seedream_edit_input, needs_image=True),
    "remove-background": KieModel("recraft/remove-background", _remove_background_input, needs_image=True),
}


def kie_model(model: str) -> KieModel:
    # unknown names pass through untouched
    return KIE_MODELS.get(model) or KieModel(model, _text_input)


class KieAdapter(ProviderAdapter):
    name = "kie"

    def __init__(
        self,
        api_key: Optional[str],
        *,
        backup_key: Optional[str] = None,
        callback_url: Optional[str] = None,
        exchange: Optional[AssetExchange] = None,
        public_base_url: Optional[str] = None,
        api_base: Optional[str] = None,
        session: Optional[requests.Session] = None,
        timeout: Optional[float] = None,
    ):
        self.api_key = api_key
        self.backup_key = backup_key
        self.callback_url = callback_url
        self.exchange = exchange
        self.public_base_url = public_base_url
        self.api_base = (api_base or settings.KIE_API_BASE).rstrip("/")
        self.session = session or requests.Session()
        self.timeout = timeout or settings.PROVIDER_TIMEOUT_SECONDS
        self.resolution_mode = ResolutionMode.CALLBACK if callback_url else ResolutionMode.POLL

    def check_input(self, model: str, input_refs: List[str]) -> None:
        if kie_model(model).needs_image and not input_refs:
            raise InvalidInput(f"Model {model} requires an input image")

    def _image_urls(self, refs: List[str]) -> List[str]:
        """KIE only fetches by URL: inline images go through the exchange."""
        urls = []
        for ref in refs:
            if ref.startswith("data:"):
                if self.exchange is None:
                    raise ProviderSubmitFailed("No exchange configured for inline input image")
                try:
                    urls.append(publish_data_url(self.exchange, ref, self.public_base_url))
                except InvalidInput as e:
                    raise ProviderSubmitFailed(str(e))
            else:
                urls.append(ref)
        return urls

    def _create_task(self, body: Dict, api_key: str) -> requests.Response:
        return self.session.post(
            f"{self.api_base}/jobs/createTask",
            json=body,
            headers={"Authorization": f"Bearer {api_key}"},
            timeout=self.timeout,
        )

    def submit(self, payload: QueuedPayload) -> Submission:
        if not self.api_key:
            raise ProviderSubmitFailed("KIE_API_KEY is missing")
        spec = kie_model(payload.model)
        images = self._image_urls(payload.input_refs)
        if spec.needs_image and not images:
            raise ProviderSubmitFailed(f"Model {payload.model} requires an input image")
        body = {"model": spec.remote_name, "input": spec.build_input(payload.prompt, images)}
        if self.callback_url:
            body["callBackUrl"] = self.callback_url

        try:
            r = self._create_task(body, self.api_key)
            if r.status_code == 429 and self.backup_key:
                logger.warning("KIE rate limited job %s, retrying with backup key", payload.job_id)
                r = self._create_task(body, self.backup_key)
            data = r.json()
        except (requests.RequestException, ValueError) as e:
            raise ProviderSubmitFailed(f"Failed to create task: {e}")

        if not isinstance(data, dict):
            data = {}
        task_id = (data.get("data") or {}).get("taskId")
        if data.get("code") != 200 or not task_id:
            raise ProviderSubmitFailed(data.get("message") or data.get("msg") or f"KIE API error {r.status_code}")
        logger.info("KIE task %s created for job %s (%s)", task_id, payload.job_id, spec.remote_name)
        return Submission(task_id=task_id)

    def resolve(self, task_id: str) -> Resolution:
        r = self.session.get(
            f"{self.api_base}/jobs/recordInfo",
            params={"taskId": task_id},
            headers={"Authorization": f"Bearer {self.api_key}"},
            timeout=self.timeout,
        )
        data = r.json()
        if not isinstance(data, dict) or data.get("code") != 200:
            raise ValueError("KIE recordInfo returned a non-success body")
        record = data.get("data")
        if not isinstance(record, dict):
            raise ValueError("KIE recordInfo returned no task record")
        state = record.get("state")
        if state == "fail":
            return Resolution.failed(record.get("failMsg") or "Unknown error")
        if state != "success":
            return Resolution.pending()
        raw = record.get("resultJson") or "{}"
        result = json.loads(raw) if isinstance(raw, str) else None
        if not isinstance(result, dict):
            raise ValueError("KIE resultJson is not an object")
        urls = result.get("resultUrls") or []
        if not isinstance(urls, list) or not urls or not isinstance(urls[0], str):
            return Resolution.failed("No image returned from provider")
        return Resolution.succeeded(urls[0])


# ---------- Google Gemini (synchronous, inline bytes) ----------

GEMINI_MODELS = {
    "gemini": "gemini-3-pro-image-preview",
    "nano-banana-pro": "gemini-3-pro-image-preview",
    "nano-banana": "gemini-2.5-flash-image",
}
GEMINI_DEFAULT_MODEL = "gemini-3-pro-image-preview"


class GeminiAdapter(ProviderAdapter):
    """
    Gemini answers the generate call with the image itself, so submit hands
    back a synthetic task id plus a settled resolution carrying a data: URL.
    """
    name = "gemini"

    def __init__(self, api_key: Optional[str], *, api_base: Optional[str] = None,
                 session: Optional[requests.Session] = None, timeout: Optional[float] = None):
        self.api_key = api_key
        self.api_base = (api_base or settings.GEMINI_API_BASE).rstrip("/")
        self.session = session or requests.Session()
        self.timeout = timeout or settings.PROVIDER_TIMEOUT_SECONDS

    def build_request(self, payload: QueuedPayload) -> Dict:
        model = GEMINI_MODELS.get(payload.model, GEMINI_DEFAULT_MODEL)
        parts: List[Dict] = [{"text": payload.prompt}]
        for ref in payload.input_refs:
            if ref.startswith("data:"):
                header, _, data = ref.partition(",")
                mime = header[5:].split(";")[0] or "image/png"
                parts.append({"inline_data": {"mime_type": mime, "data": data}})
        image_config = {"aspectRatio": "3:4"}
        if model == "gemini-3-pro-image-preview":
            image_config["imageSize"] = "1K"
        return {
            "contents": [{"role": "user", "parts": parts}],
            "generationConfig": {"responseModalities": ["TEXT", "IMAGE"], "imageConfig": image_config},
        }

    def submit(self, payload: QueuedPayload) -> Submission:
        if not self.api_key:
            raise ProviderSubmitFailed("GEMINI_API_KEY is missing")
        model = GEMINI_MODELS.get(payload.model, GEMINI_DEFAULT_MODEL)
        try:
            r = self.session.post(
                f"{self.api_base}/models/{model}:generateContent",
                params={"key": self.api_key},
                json=self.build_request(payload),
                timeout=self.timeout,
            )
        except requests.RequestException as e:
            raise ProviderSubmitFailed(f"Gemini request failed: {e}")
        if not r.ok:
            raise ProviderSubmitFailed(f"Gemini API error {r.status_code}: {r.text[:300]}")
        try:
            data = r.json()
        except ValueError as e:
            raise ProviderSubmitFailed(f"Gemini returned malformed body: {e}")

        task_id = f"gemini-{uuid.uuid4().hex}"
        if data.get("error"):
            return Submission(task_id, Resolution.failed(data["error"].get("message") or "Gemini error"))

        candidates = data.get("candidates") or [{}]
        for part in (candidates[0].get("content") or {}).get("parts") or []:
            if part.get("thought"):
                continue
            inline = part.get("inlineData") or part.get("inline_data")
            if inline and inline.get("data"):
                mime = inline.get("mimeType") or inline.get("mime_type") or "image/png"
                return Submission(task_id, Resolution.succeeded(f"data:{mime};base64,{inline['data']}"))
        return Submission(task_id, Resolution.failed("No image returned from Gemini"))

    def resolve(self, task_id: str) -> Resolution:
        # results are only ever returned inline from submit
        return Resolution.failed("Gemini tasks cannot be polled")


# ---------- Registry ----------

class ProviderRegistry:
    """Routes a model name to its adapter; unknown models go to the default."""

    def __init__(self, default: ProviderAdapter, routes: Optional[Dict[str, ProviderAdapter]] = None):
        self.default = default
        self.routes = dict(routes or {})

    def for_model(self, model: str) -> ProviderAdapter:
        return self.routes.get(model, self.default)


def callback_url(base_url: Optional[str]) -> Optional[str]:
    if not base_url:
        return None
    return f"{base_url.rstrip('/')}/api/queue/callback"


def build_registry(exchange: Optional[AssetExchange] = None) -> ProviderRegistry:
    base = settings.PUBLIC_BASE_URL
    kie = KieAdapter(
        settings.KIE_API_KEY,
        backup_key=settings.KIE_API_KEY_BACKUP,
        callback_url=callback_url(base) if settings.KIE_USE_CALLBACK else None,
        exchange=exchange,
        public_base_url=base,
    )
    gemini = GeminiAdapter(settings.GEMINI_API_KEY)
    return ProviderRegistry(default=kie, routes={m: gemini for m in GEMINI_MODELS})

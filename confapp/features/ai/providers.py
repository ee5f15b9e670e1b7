"""
AI provider abstraction layer.

Providers summarize a paper, check its format and score its similarity
against other submissions. OpenAI and Google Gemini are supported over
their HTTP APIs; providers are looked up by name in a ``ProviderRegistry``
built at startup.
"""
import enum
import math
import re
from abc import ABC, abstractmethod
from typing import Any, Optional

import httpx

from confapp.core import config
from confapp.utils import get_logger


log = get_logger(__name__)

# Provider input is truncated to keep requests inside model context limits
MAX_SUMMARY_INPUT = 15000
MAX_EMBEDDING_INPUT = 8000
CORPUS_SAMPLE_SIZE = 5

REFERENCE_HEADERS = [
    re.compile(r"\n\s*references\s*\n", re.IGNORECASE),
    re.compile(r"\n\s*bibliography\s*\n", re.IGNORECASE),
    re.compile(r"\n\s*works cited\s*\n", re.IGNORECASE),
]


class ProviderName(str, enum.Enum):
    OPENAI = "openai"
    GEMINI = "gemini"


class ProviderError(Exception):
    """Provider call failed; the message is what failure classification reads."""
    pass


def remove_references_section(text: str) -> str:
    for pattern in REFERENCE_HEADERS:
        match = pattern.search(text)
        if match:
            return text[:match.start()]
    return text


def _ngrams(text: str, n: int = 5) -> set[str]:
    words = text.lower().split()
    return {" ".join(words[i:i + n]) for i in range(len(words) - n + 1)}


def ngram_similarity(text: str, corpus: list[str], n: int = 5) -> int:
    """Highest share (0-100) of the text's word n-grams found in one corpus entry."""
    current = _ngrams(text, n)
    if not current:
        return 0
    best = 0.0
    for other in corpus:
        overlap = len(current & _ngrams(other, n)) / len(current)
        best = max(best, overlap)
    return round(best * 100)


def similarity_result(score_pct: float, threshold_pct: int, exclude_references: bool) -> dict[str, Any]:
    score_pct = min(100, max(0, round(score_pct)))
    return {
        "score_pct": score_pct,
        "threshold_pct": threshold_pct,
        "flagged": score_pct >= threshold_pct,
        "exclude_references_used": exclude_references,
    }


def _raise_for_status(response: httpx.Response, label: str) -> None:
    """Turn provider HTTP errors into messages failure classification understands."""
    if response.status_code in (401, 403):
        raise ProviderError(f"Invalid {label} API key")
    if response.status_code == 429:
        if "quota" in response.text.lower():
            raise ProviderError(f"{label} quota exceeded")
        raise ProviderError(f"{label} rate limit exceeded")
    response.raise_for_status()


class AIProvider(ABC):
    """Abstract base class for AI providers."""

    name: ProviderName

    @abstractmethod
    async def generate_summary(self, text: str, model: Optional[str] = None) -> dict[str, Any]:
        """Return ``{"text", "word_count", "provider_meta"}``."""
        pass

    @abstractmethod
    async def compute_similarity(
        self,
        text: str,
        corpus: list[str],
        threshold_pct: int = 20,
        exclude_references: bool = True,
        model: Optional[str] = None,
    ) -> dict[str, Any]:
        """Return ``{"score_pct", "threshold_pct", "flagged", "exclude_references_used"}``."""
        pass

    async def run_format_checks(self, text: str, metadata: dict[str, Any]) -> dict[str, Any]:
        """
        Heuristic format checks shared by all providers.

        Score is the percentage of passed checks.
        """
        metadata = metadata or {}
        word_count = len(text.split())
        min_words = 2000
        abstract = metadata.get("abstract") or ""
        title = metadata.get("title") or ""
        has_references = bool(re.search(r"references|bibliography", text, re.IGNORECASE))

        checks = [
            {
                "key": "minimum_word_count",
                "passed": word_count >= min_words,
                "notes": f"Document has {word_count} words (minimum: {min_words})",
            },
            {
                "key": "has_abstract",
                "passed": len(abstract) > 50,
                "notes": "Abstract present" if len(abstract) > 50 else "Abstract missing or too short",
            },
            {
                "key": "has_title",
                "passed": len(title) > 5,
                "notes": "Title present" if len(title) > 5 else "Title missing or too short",
            },
            {
                "key": "has_references",
                "passed": has_references,
                "notes": "References section detected" if has_references else "No references section found",
            },
        ]
        passed = sum(1 for check in checks if check["passed"])
        return {"score": round(passed / len(checks) * 100), "checks": checks}


class OpenAIProvider(AIProvider):
    """OpenAI chat completions for summaries, embeddings for similarity."""

    name = ProviderName.OPENAI

    def __init__(
        self,
        api_key: Optional[str],
        default_model: str = "gpt-4o-mini",
        embedding_model: str = "text-embedding-3-small",
    ):
        self.api_key = api_key
        self.default_model = default_model
        self.embedding_model = embedding_model
        self.base_url = "https://api.openai.com/v1"

    def _headers(self) -> dict[str, str]:
        if not self.api_key:
            raise ProviderError("OpenAI API key not configured")
        return {"Authorization": f"Bearer {self.api_key}", "Content-Type": "application/json"}

    async def generate_summary(self, text: str, model: Optional[str] = None) -> dict[str, Any]:
        model = model or self.default_model
        if len(text) > MAX_SUMMARY_INPUT:
            text = text[:MAX_SUMMARY_INPUT] + "...[truncated]"

        async with httpx.AsyncClient(timeout=60.0) as client:
            response = await client.post(
                f"{self.base_url}/chat/completions",
                headers=self._headers(),
                json={
                    "model": model,
                    "messages": [
                        {
                            "role": "system",
                            "content": "You are an academic paper reviewer. Summarize the paper's key "
                                       "contributions, methodology and findings concisely.",
                        },
                        {"role": "user", "content": f"Summarize this academic paper:\n\n{text}"},
                    ],
                    "max_tokens": 500,
                    "temperature": 0.3,
                },
            )
            _raise_for_status(response, "OpenAI")
            data = response.json()

        summary = data["choices"][0]["message"]["content"] or ""
        return {
            "text": summary,
            "word_count": len(summary.split()),
            "provider_meta": {"provider": self.name.value, "model": model, "usage": data.get("usage", {})},
        }

    async def _embed(self, client: httpx.AsyncClient, text: str, model: str) -> list[float]:
        response = await client.post(
            f"{self.base_url}/embeddings",
            headers=self._headers(),
            json={"model": model, "input": text[:MAX_EMBEDDING_INPUT]},
        )
        _raise_for_status(response, "OpenAI")
        return response.json()["data"][0]["embedding"]

    async def compute_similarity(
        self,
        text: str,
        corpus: list[str],
        threshold_pct: int = 20,
        exclude_references: bool = True,
        model: Optional[str] = None,
    ) -> dict[str, Any]:
        model = model or self.embedding_model
        if exclude_references:
            text = remove_references_section(text)
        if not corpus:
            return similarity_result(0, threshold_pct, exclude_references)

        try:
            async with httpx.AsyncClient(timeout=60.0) as client:
                current = await self._embed(client, text, model)
                scores = []
                for other in corpus[:CORPUS_SAMPLE_SIZE]:
                    scores.append(_cosine(current, await self._embed(client, other, model)))
        except httpx.HTTPError as e:
            log.warning(f"OpenAI embeddings failed ({e}); using n-gram similarity")
            return similarity_result(ngram_similarity(text, corpus), threshold_pct, exclude_references)

        return similarity_result(max(scores, default=0) * 100, threshold_pct, exclude_references)


def _cosine(a: list[float], b: list[float]) -> float:
    dot = sum(x * y for x, y in zip(a, b))
    norm = math.sqrt(sum(x * x for x in a)) * math.sqrt(sum(y * y for y in b))
    return dot / norm if norm else 0.0


class GeminiProvider(AIProvider):
    """Google Gemini generateContent for both summaries and similarity scoring."""

    name = ProviderName.GEMINI

    def __init__(self, api_key: Optional[str], default_model: str = "gemini-2.5-pro"):
        self.api_key = api_key
        self.default_model = default_model
        self.base_url = "https://generativelanguage.googleapis.com/v1beta"

    async def _generate(self, prompt: str, model: str) -> str:
        if not self.api_key:
            raise ProviderError("Gemini API key not configured")

        async with httpx.AsyncClient(timeout=60.0) as client:
            response = await client.post(
                f"{self.base_url}/models/{model}:generateContent",
                params={"key": self.api_key},
                headers={"Content-Type": "application/json"},
                json={"contents": [{"role": "user", "parts": [{"text": prompt}]}]},
            )
            _raise_for_status(response, "Gemini")
            data = response.json()

        try:
            return data["candidates"][0]["content"]["parts"][0]["text"]
        except (KeyError, IndexError) as e:
            raise ProviderError(f"Unexpected Gemini response: {e}") from e

    async def generate_summary(self, text: str, model: Optional[str] = None) -> dict[str, Any]:
        model = model or self.default_model
        prompt = (
            "Summarize the following document in 300 words.\n"
            "Style: academic.\n\n"
            f"Document:\n{text[:MAX_SUMMARY_INPUT]}"
        )
        summary = await self._generate(prompt, model)
        return {
            "text": summary,
            "word_count": len(summary.split()),
            "provider_meta": {"provider": self.name.value, "model": model},
        }

    async def compute_similarity(
        self,
        text: str,
        corpus: list[str],
        threshold_pct: int = 20,
        exclude_references: bool = True,
        model: Optional[str] = None,
    ) -> dict[str, Any]:
        if exclude_references:
            text = remove_references_section(text)
        if not corpus:
            return similarity_result(0, threshold_pct, exclude_references)

        references = "\n\n---\n\n".join(corpus[:CORPUS_SAMPLE_SIZE])
        prompt = (
            "Analyze the similarity between the PRIMARY document and the REFERENCE documents.\n"
            "Return ONLY a number between 0 and 100 representing similarity percentage.\n\n"
            f"PRIMARY DOCUMENT:\n{text[:MAX_SUMMARY_INPUT]}\n\n"
            f"REFERENCE DOCUMENTS:\n{references}"
        )
        raw = await self._generate(prompt, model or self.default_model)
        match = re.search(r"\d+(\.\d+)?", raw)
        return similarity_result(float(match.group(0)) if match else 0, threshold_pct, exclude_references)


class ProviderRegistry:
    """
    Providers by name.

    Usage:
        registry = ProviderRegistry()
        registry.register(OpenAIProvider(api_key))
        provider = registry.get("openai")
    """

    def __init__(self, providers: Optional[list[AIProvider]] = None):
        self._providers: dict[ProviderName, AIProvider] = {}
        for provider in providers or []:
            self.register(provider)

    def register(self, provider: AIProvider) -> None:
        self._providers[ProviderName(provider.name)] = provider

    def get(self, name: Optional[str] = None) -> AIProvider:
        """Provider for ``name``, or the configured default when name is empty."""
        raw = (name or config.AI_DEFAULT_PROVIDER).lower()
        if raw == "google":
            raw = ProviderName.GEMINI.value
        try:
            key = ProviderName(raw)
        except ValueError:
            raise ProviderError(f"Unknown AI provider: {name}")
        if key not in self._providers:
            raise ProviderError(f"AI provider {key.value} is not registered")
        return self._providers[key]

    def names(self) -> list[str]:
        return [name.value for name in self._providers]


def build_default_registry() -> ProviderRegistry:
    return ProviderRegistry([
        OpenAIProvider(config.OPENAI_API_KEY),
        GeminiProvider(config.GEMINI_API_KEY),
    ])


_registry: Optional[ProviderRegistry] = None


def get_provider_registry() -> ProviderRegistry:
    """Process-wide provider registry; FastAPI dependency."""
    global _registry
    if _registry is None:
        _registry = build_default_registry()
    return _registry


def set_provider_registry(registry: ProviderRegistry) -> None:
    global _registry
    _registry = registry

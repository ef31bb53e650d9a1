"""
Embedding capability: text → fixed-length vector via the Hugging Face Inference API
(sentence-transformers/all-MiniLM-L6-v2, 384 dims).

Vectors are L2-normalised so Milvus COSINE similarity is 1 - cosine distance.
"""

import logging

import httpx

from inboxpilot.core.config import EMBED_API_TIMEOUT, EMBED_BATCH_SIZE, EMBED_MAX_CHARS, HF_EMBED_MODEL
from inboxpilot.core.errors import ServiceUnavailableError

logger = logging.getLogger(__name__)

HF_API_URL_ROUTER = (
    "https://router.huggingface.co/hf-inference/models/"
    f"{HF_EMBED_MODEL}/pipeline/feature-extraction"
)
HF_API_URL_STANDARD = f"https://api-inference.huggingface.co/models/{HF_EMBED_MODEL}"


def _normalize(vec: list[float]) -> list[float]:
    norm = sum(x * x for x in vec) ** 0.5
    if norm == 0:
        norm = 1.0
    return [x / norm for x in vec]


class HuggingFaceEmbedder:
    """Batch embedder over the HF router, falling back to the standard inference URL on 403."""

    def __init__(
        self,
        api_key: str,
        batch_size: int = EMBED_BATCH_SIZE,
        timeout: float = EMBED_API_TIMEOUT,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        self._api_key = api_key
        self._batch_size = batch_size
        self._timeout = timeout
        self._transport = transport

    def embed(self, text: str) -> list[float] | None:
        """Embed one text. Returns None for blank input."""
        if not text or not text.strip():
            return None
        vectors = self.embed_texts([text])
        return vectors[0] if vectors else None

    def embed_texts(self, texts: list[str]) -> list[list[float]]:
        """
        Batch embed texts. Each text is truncated to EMBED_MAX_CHARS.
        Raises ServiceUnavailableError when the API key is missing or the API refuses.
        """
        if not texts:
            return []
        if not self._api_key:
            raise ServiceUnavailableError(
                "HF_API_KEY must be set in .env. Get a token from https://huggingface.co/settings/tokens"
            )

        headers = {
            "Authorization": f"Bearer {self._api_key}",
            "Content-Type": "application/json",
        }
        all_embeddings: list[list[float]] = []

        with httpx.Client(timeout=self._timeout, transport=self._transport) as client:
            for i in range(0, len(texts), self._batch_size):
                batch = [t[:EMBED_MAX_CHARS] for t in texts[i : i + self._batch_size]]
                payload = {"inputs": batch, "options": {"wait_for_model": True}}
                api_urls = [HF_API_URL_ROUTER, HF_API_URL_STANDARD]
                response = None
                last_error: str | None = None

                for api_url in api_urls:
                    try:
                        response = client.post(api_url, json=payload, headers=headers)
                        if response.status_code == 200:
                            break
                        if response.status_code == 403 and api_url == HF_API_URL_ROUTER:
                            last_error = response.text
                            continue
                        break
                    except httpx.HTTPError as e:
                        last_error = str(e)
                        if api_url == api_urls[-1]:
                            raise ServiceUnavailableError(f"Embedding request failed: {e}") from e
                        continue

                if response is None or response.status_code != 200:
                    msg = response.text if response is not None else last_error
                    status = response.status_code if response is not None else None
                    logger.warning("[embeddings] HF API error status=%s msg=%s", status, (msg or "")[:200])
                    if status == 503:
                        raise ServiceUnavailableError(f"HF model is loading. Retry later. {msg}")
                    if status == 401:
                        raise ServiceUnavailableError(
                            "Invalid HF API key. Check HF_API_KEY at https://huggingface.co/settings/tokens"
                        )
                    raise ServiceUnavailableError(f"HF API error: {msg}")

                result = response.json()
                if isinstance(result, list) and result and isinstance(result[0], list):
                    batch_emb = result
                else:
                    batch_emb = [
                        item if isinstance(item, list) else [item]
                        for item in (result if isinstance(result, list) else [result])
                    ]
                all_embeddings.extend(_normalize(vec) for vec in batch_emb)

        logger.info("[embeddings] OUT texts=%d vectors=%d", len(texts), len(all_embeddings))
        return all_embeddings

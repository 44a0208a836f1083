"""OpenAI-compatible embeddings over HTTP.

Calls ``POST {base_url}/embeddings`` with ``{"model", "input", "dimensions"}``
and reads ``data[0].embedding`` from the response.  Works with OpenAI and
with self-hosted servers exposing the same endpoint.
"""

from __future__ import annotations

from typing import Any

import httpx
from loguru import logger

from codelab.workspace_engine.errors import EmbeddingError


class HttpEmbeddingClient:
    """EmbeddingClient backed by an ``httpx.AsyncClient``."""

    def __init__(
        self,
        *,
        base_url: str,
        model: str,
        dimensions: int,
        api_key: str | None = None,
        timeout: float = 30.0,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self._model = model
        self._dimensions = dimensions
        headers = {"Content-Type": "application/json"}
        if api_key:
            headers["Authorization"] = f"Bearer {api_key}"
        self._own_client = client is None
        self._client = client or httpx.AsyncClient(
            base_url=base_url.rstrip("/") + "/",
            headers=headers,
            timeout=timeout,
        )

    @property
    def model(self) -> str:
        return self._model

    async def embed(self, text: str) -> list[float]:
        payload: dict[str, Any] = {"model": self._model, "input": text, "dimensions": self._dimensions}
        try:
            response = await self._client.post("embeddings", json=payload)
            response.raise_for_status()
            vector = response.json()["data"][0]["embedding"]
        except httpx.HTTPStatusError as exc:
            msg = f"Embedding request failed with HTTP {exc.response.status_code}"
            raise EmbeddingError(msg) from exc
        except httpx.HTTPError as exc:
            msg = f"Embedding request failed: {exc}"
            raise EmbeddingError(msg) from exc
        except (KeyError, IndexError, TypeError, ValueError) as exc:
            msg = "Malformed embedding response"
            raise EmbeddingError(msg) from exc

        if len(vector) != self._dimensions:
            msg = f"Expected {self._dimensions}-dimensional embedding, got {len(vector)}"
            raise EmbeddingError(msg)
        return [float(x) for x in vector]

    async def aclose(self) -> None:
        if self._own_client:
            await self._client.aclose()
            logger.debug("Embedding HTTP client closed")

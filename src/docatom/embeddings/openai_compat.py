"""OpenAI-compatible embeddings client.

Provides embedding generation via the /v1/embeddings endpoint exposed by
OpenAI and by vLLM.
"""
from __future__ import annotations
import httpx

from docatom.errors import ProviderError


async def openai_embed(
    texts: list[str],
    model: str,
    base_url: str,
    api_key: str = "",
    batch_size: int = 32,
    timeout: float = 120.0,
) -> list[list[float]]:
    """Generate embeddings using an OpenAI-compatible API.

    Args:
        texts: List of texts to embed
        model: Model name
        base_url: Provider base URL
        api_key: API key for authentication (optional for local servers)
        batch_size: Maximum texts per request
        timeout: Request timeout in seconds

    Returns:
        List of embedding vectors, one per input text

    Raises:
        ProviderError: If the request fails or the response is malformed
    """
    if not texts:
        return []

    all_embeddings: list[list[float]] = []

    # Build headers - only add Authorization if api_key is provided
    headers = {}
    if api_key:
        headers["Authorization"] = f"Bearer {api_key}"

    async with httpx.AsyncClient(timeout=timeout) as client:
        for i in range(0, len(texts), batch_size):
            batch = texts[i:i + batch_size]

            try:
                response = await client.post(
                    f"{base_url.rstrip('/')}/v1/embeddings",
                    headers=headers,
                    json={"model": model, "input": batch},
                )
                response.raise_for_status()
                data = response.json()
            except httpx.HTTPError as e:
                raise ProviderError(f"Embedding request failed: {e}") from e

            try:
                items = sorted(data["data"], key=lambda item: item.get("index", 0))
                batch_embeddings = [item["embedding"] for item in items]
            except (KeyError, TypeError) as e:
                raise ProviderError(f"Malformed embedding response: {e}") from e

            if len(batch_embeddings) != len(batch):
                raise ProviderError(
                    f"Embedding response has {len(batch_embeddings)} vectors for {len(batch)} inputs"
                )
            all_embeddings.extend(batch_embeddings)

    return all_embeddings

"""HTTP client for collaborator model APIs."""
import json
from typing import Any, Dict, List, Optional, Tuple

import aiohttp

from ..config import ModelConfig
from ..utils.logging import get_logger
from ..utils.retry import TRANSIENT_STATUSES, TransientStatusError, create_retry_decorator

logger = get_logger(__name__)


class ModelClient:
    """Async HTTP client for OpenAI-compatible chat and embedding endpoints."""

    def __init__(
        self,
        session: aiohttp.ClientSession,
        timeout: float = 30,
        retry_attempts: int = 3,
    ):
        """Initialize client with a shared session."""
        self.session = session
        self.timeout = aiohttp.ClientTimeout(total=timeout)
        self._call_count = 0
        self._post = create_retry_decorator(max_attempts=retry_attempts)(self._post_once)

    async def _post_once(
        self,
        url: str,
        payload: Dict[str, Any],
        headers: Dict[str, str],
    ) -> Tuple[int, str]:
        async with self.session.post(
            url,
            json=payload,
            headers=headers,
            timeout=self.timeout,
        ) as response:
            text = await response.text()
            if response.status in TRANSIENT_STATUSES:
                raise TransientStatusError(response.status, text)
            return response.status, text

    async def _post_json(
        self,
        url: str,
        payload: Dict[str, Any],
        headers: Dict[str, str],
    ) -> Tuple[int, str]:
        """POST with retry; a transient status that outlives the retries is returned."""
        try:
            return await self._post(url, payload, headers)
        except TransientStatusError as e:
            return e.status, e.body

    def _headers(self, api_key: str) -> Dict[str, str]:
        return {
            "Content-Type": "application/json",
            "Authorization": f"Bearer {api_key}"
        }

    async def call_model(
        self,
        model_config: ModelConfig,
        messages: List[Dict[str, Any]],
        api_key: str,
        call_id: str = "",
        response_format: Optional[Dict[str, Any]] = None,
    ) -> Dict[str, Any]:
        """Call a chat completion endpoint with retry logic."""
        self._call_count += 1

        payload = {
            "model": model_config.model,
            "messages": messages,
            "temperature": model_config.temperature,
            "max_tokens": model_config.max_tokens
        }
        if response_format:
            payload["response_format"] = response_format

        try:
            logger.debug("calling_model", call_id=call_id, model=model_config.model)
            status, response_text = await self._post_json(
                model_config.api_url, payload, self._headers(api_key)
            )
        except Exception as e:
            logger.warning("model_exception", call_id=call_id, error=str(e))
            return {"success": False, "error": str(e)}

        if status != 200:
            logger.warning(
                "model_error",
                call_id=call_id,
                status=status,
                response=response_text[:200],
            )
            return {"success": False, "error": f"HTTP {status}: {response_text[:200]}"}

        try:
            data = json.loads(response_text)
            content = data["choices"][0]["message"].get("content") or ""
        except (ValueError, KeyError, IndexError, TypeError) as e:
            logger.warning("model_bad_response", call_id=call_id, error=str(e))
            return {"success": False, "error": f"Malformed response: {e}"}

        logger.debug("model_success", call_id=call_id, content_length=len(content))
        return {"success": True, "content": content, "usage": data.get("usage", {})}

    async def embed(
        self,
        model_config: ModelConfig,
        texts: List[str],
        api_key: str,
        call_id: str = "",
    ) -> Dict[str, Any]:
        """Call an embeddings endpoint; vectors are returned in input order."""
        self._call_count += 1

        payload = {"model": model_config.model, "input": texts}

        try:
            logger.debug("calling_embeddings", call_id=call_id, count=len(texts))
            status, response_text = await self._post_json(
                model_config.api_url, payload, self._headers(api_key)
            )
        except Exception as e:
            logger.warning("embedding_exception", call_id=call_id, error=str(e))
            return {"success": False, "error": str(e)}

        if status != 200:
            logger.warning("embedding_error", call_id=call_id, status=status)
            return {"success": False, "error": f"HTTP {status}: {response_text[:200]}"}

        try:
            data = json.loads(response_text)
            items = sorted(data["data"], key=lambda item: item.get("index", 0))
            vectors = [[float(x) for x in item["embedding"]] for item in items]
        except (ValueError, KeyError, TypeError) as e:
            logger.warning("embedding_bad_response", call_id=call_id, error=str(e))
            return {"success": False, "error": f"Malformed response: {e}"}

        return {"success": True, "embeddings": vectors}

    @property
    def total_calls(self) -> int:
        """Get total number of API calls made."""
        return self._call_count

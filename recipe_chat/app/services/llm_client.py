import json
import logging
import re
from typing import Any, Dict, List, Optional

import httpx

from recipe_chat.app.core.config import Settings
from recipe_chat.app.services.errors import UpstreamUnavailable

logger = logging.getLogger(__name__)


# Remove ASCII control chars that frequently break json.loads (except \n, \r, \t)
def _strip_invalid_control_chars(s: str) -> str:
    if not isinstance(s, str):
        return str(s)
    return re.sub(r"[\x00-\x08\x0B\x0C\x0E-\x1F]", "", s)


def _strip_code_fence(text: str) -> str:
    txt = text.strip()
    if txt.startswith("```"):
        txt = re.sub(r"^```[a-zA-Z0-9_-]*\s*", "", txt, count=1)
        txt = re.sub(r"\s*```$", "", txt, count=1).strip()
    return txt


def _try_local_json_repair(raw: str) -> Optional[str]:
    cleaned = _strip_code_fence(_strip_invalid_control_chars(raw))
    if cleaned.startswith("{") and cleaned.endswith("}"):
        try:
            json.loads(cleaned)
            return cleaned
        except json.JSONDecodeError:
            pass
    start = cleaned.find("{")
    end = cleaned.rfind("}")
    if start != -1 and end != -1 and end > start:
        snippet = cleaned[start : end + 1]
        try:
            json.loads(snippet)
            return snippet
        except json.JSONDecodeError:
            return None
    return None


def loads_json_object(raw: str) -> Optional[Dict[str, Any]]:
    """Parse a model reply into a dict, tolerating fences and stray prose."""
    repaired = _try_local_json_repair(raw)
    if repaired is None:
        return None
    data = json.loads(repaired)
    return data if isinstance(data, dict) else None


class LLMClient:
    """Thin client for an OpenAI-compatible chat + embeddings endpoint.

    All transport problems (missing config, timeouts, HTTP errors, proxy error
    payloads, empty content) surface as ``UpstreamUnavailable`` so callers have a
    single exception to handle at their boundary.
    """

    def __init__(self, settings: Settings, http_client: httpx.AsyncClient):
        self.settings = settings
        self.http = http_client

    @property
    def configured(self) -> bool:
        return bool(self.settings.llm_base_url)

    def _headers(self) -> Dict[str, str]:
        headers = {"Content-Type": "application/json"}
        if self.settings.llm_api_key:
            headers["Authorization"] = f"Bearer {self.settings.llm_api_key}"
        return headers

    def _url(self, path: str) -> str:
        if not self.configured:
            raise UpstreamUnavailable("LLM_BASE_URL is not configured")
        return f"{self.settings.llm_base_url.rstrip('/')}{path}"

    async def _post(self, path: str, payload: Dict[str, Any], timeout_seconds: float) -> Dict[str, Any]:
        url = self._url(path)
        timeout = httpx.Timeout(timeout_seconds, read=timeout_seconds, connect=10.0)
        try:
            resp = await self.http.post(url, json=payload, headers=self._headers(), timeout=timeout)
        except httpx.TimeoutException as exc:
            logger.warning("LLM request to %s timed out: %s", path, exc)
            raise UpstreamUnavailable("timeout") from exc
        except httpx.HTTPError as exc:
            logger.warning("LLM request to %s failed: %s", path, exc)
            raise UpstreamUnavailable("transport error") from exc

        if resp.status_code >= 400:
            logger.warning("LLM endpoint %s returned status %s: %s", path, resp.status_code, resp.text[:500])
            raise UpstreamUnavailable(f"status {resp.status_code}")
        try:
            data = resp.json()
        except ValueError as exc:
            logger.warning("LLM endpoint %s returned non-JSON body", path)
            raise UpstreamUnavailable("invalid response body") from exc

        # Proxies report failures inside a 200 body
        if isinstance(data, dict) and "error" in data:
            error_info = data["error"] if isinstance(data["error"], dict) else {"message": str(data["error"])}
            logger.warning(
                "LLM proxy returned error: type=%s, message=%s",
                error_info.get("type", "unknown_error"),
                str(error_info.get("message", "Unknown error"))[:500],
            )
            raise UpstreamUnavailable("proxy error")
        if not isinstance(data, dict):
            raise UpstreamUnavailable("invalid response body")
        return data

    async def chat_completion(
        self,
        messages: List[Dict[str, str]],
        *,
        temperature: float = 0.0,
        json_mode: bool = False,
        max_tokens: int = 800,
        timeout_seconds: Optional[float] = None,
    ) -> str:
        payload: Dict[str, Any] = {
            "model": self.settings.llm_model_name,
            "temperature": temperature,
            "messages": messages,
            "max_tokens": max_tokens,
            "stream": False,
        }
        if json_mode:
            payload["response_format"] = {"type": "json_object"}
        data = await self._post(
            "/v1/chat/completions", payload, timeout_seconds or self.settings.llm_timeout_seconds
        )
        choices = data.get("choices") or [{}]
        content = (choices[0].get("message") or {}).get("content")
        if not content:
            raise UpstreamUnavailable("empty completion")
        return content if isinstance(content, str) else str(content)

    async def chat_json(
        self,
        messages: List[Dict[str, str]],
        *,
        schema_hint: str,
        temperature: float = 0.0,
        max_tokens: int = 800,
        timeout_seconds: Optional[float] = None,
    ) -> Dict[str, Any]:
        """Ask for a JSON object; local repair first, then one model-assisted repair."""
        raw = await self.chat_completion(
            messages,
            temperature=temperature,
            json_mode=True,
            max_tokens=max_tokens,
            timeout_seconds=timeout_seconds,
        )
        parsed = loads_json_object(raw)
        if parsed is not None:
            return parsed
        logger.info("LLM returned malformed JSON, attempting model repair")
        repaired = await self._repair_json(raw, schema_hint)
        if repaired is None:
            raise UpstreamUnavailable("unparseable JSON")
        return repaired

    async def _repair_json(self, broken_json: str, schema_hint: str) -> Optional[Dict[str, Any]]:
        try:
            content = await self.chat_completion(
                [
                    {
                        "role": "system",
                        "content": "Repair malformed JSON to match the schema. Return ONLY valid JSON.",
                    },
                    {
                        "role": "user",
                        "content": f"Schema: {schema_hint}\nMalformed JSON:\n{_strip_invalid_control_chars(broken_json)}",
                    },
                ],
                json_mode=True,
            )
        except UpstreamUnavailable:
            return None
        return loads_json_object(content)

    async def embeddings(self, texts: List[str], *, timeout_seconds: Optional[float] = None) -> List[List[float]]:
        payload = {"model": self.settings.embedding_model_name, "input": texts}
        data = await self._post(
            "/v1/embeddings", payload, timeout_seconds or self.settings.embedding_timeout_seconds
        )
        items = data.get("data")
        if not isinstance(items, list) or len(items) != len(texts):
            raise UpstreamUnavailable("embedding response shape")
        ordered = sorted(items, key=lambda item: item.get("index", 0))
        vectors: List[List[float]] = []
        for item in ordered:
            vector = item.get("embedding")
            if not isinstance(vector, list) or not vector:
                raise UpstreamUnavailable("empty embedding")
            vectors.append([float(v) for v in vector])
        return vectors

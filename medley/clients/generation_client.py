from __future__ import annotations

import base64
import binascii
import logging
from typing import Any, Dict, List, Optional

import httpx
from tenacity import AsyncRetrying, retry_if_exception_type, stop_after_attempt, wait_exponential

from medley.errors import GenerationError

logger = logging.getLogger("generation_client")

DEFAULT_GENERATE_OPTIONS: Dict[str, Any] = {
    "temperature": 0.8,
    "creativity": 0.7,
    "length_seconds": 120,
}

DEFAULT_ENCODE_OPTIONS: Dict[str, Any] = {
    "quality": "high",
    "sample_rate": 44100,
    "bit_rate": 320,
}


def _b64(data: bytes) -> str:
    return base64.b64encode(data).decode("ascii")


def _unb64(value: Any, field: str) -> bytes:
    if not value or not isinstance(value, str):
        raise GenerationError(f"generation service returned no {field}", kind="invalid_response")
    try:
        return base64.b64decode(value, validate=True)
    except (binascii.Error, ValueError) as e:
        raise GenerationError(f"generation service returned invalid {field}", kind="invalid_response") from e


def _remote_message(resp: httpx.Response) -> str:
    try:
        obj = resp.json()
    except ValueError:
        obj = None
    if isinstance(obj, dict):
        msg = obj.get("message") or obj.get("detail") or obj.get("error")
        if msg:
            return str(msg)
    text = (resp.text or "").strip()
    return text[:200] if text else f"HTTP {resp.status_code}"


class GenerationClient:
    """
    JSON client for the MIDI generation service.

    POST /generate        {"midi_files": [b64...], "options": {...}} -> {"generated_midi": b64}
    POST /convert-to-mp3  {"midi_data": b64, "options": {...}}       -> {"mp3_data": b64}
    GET  /health, GET /info

    Only connection failures are retried (the request never reached the
    service). Timeouts and HTTP errors surface immediately as GenerationError.
    """

    def __init__(
        self,
        base_url: str,
        *,
        api_key: Optional[str] = None,
        timeout: float = 300.0,
        connect_attempts: int = 3,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        wait=None,
    ) -> None:
        headers = {"Content-Type": "application/json", "Accept": "application/json"}
        if api_key:
            headers["Authorization"] = f"Bearer {api_key}"

        self.base_url = base_url.rstrip("/")
        self.timeout = float(timeout)
        self.connect_attempts = max(1, int(connect_attempts))
        self._wait = wait if wait is not None else wait_exponential(multiplier=0.5, min=0.5, max=4.0)
        self._client = httpx.AsyncClient(
            base_url=self.base_url,
            timeout=self.timeout,
            headers=headers,
            transport=transport,
        )

    async def _send(self, method: str, path: str, payload: Optional[Dict[str, Any]] = None) -> httpx.Response:
        async for attempt in AsyncRetrying(
            reraise=True,
            stop=stop_after_attempt(self.connect_attempts),
            wait=self._wait,
            retry=retry_if_exception_type(httpx.ConnectError),
        ):
            with attempt:
                n = attempt.retry_state.attempt_number
                if n > 1:
                    logger.warning("generation_connect_retry", extra={"path": path, "attempt": n})
                return await self._client.request(method, path, json=payload)
        raise RuntimeError("generation request was never attempted")

    async def _post(self, path: str, payload: Dict[str, Any]) -> Dict[str, Any]:
        try:
            resp = await self._send("POST", path, payload)
        except httpx.TimeoutException as e:
            raise GenerationError("generation service timed out", kind="timeout") from e
        except httpx.ConnectError as e:
            raise GenerationError("generation service is not available", kind="unavailable") from e
        except httpx.TransportError as e:
            raise GenerationError(f"generation service request failed: {e}", kind="unavailable") from e

        if resp.status_code == 413:
            raise GenerationError("MIDI files too large for generation service", kind="too_large", status_code=413)
        if resp.status_code == 429:
            raise GenerationError(
                "generation service is busy, please try again later", kind="busy", status_code=429
            )
        if resp.status_code >= 400:
            raise GenerationError(
                f"generation error: {_remote_message(resp)}", kind="remote", status_code=resp.status_code
            )

        try:
            data = resp.json()
        except ValueError as e:
            raise GenerationError("generation service returned invalid JSON", kind="invalid_response") from e
        if not isinstance(data, dict):
            raise GenerationError("generation service returned unexpected payload", kind="invalid_response")

        if str(data.get("status") or "").lower() == "error":
            raise GenerationError(str(data.get("message") or "generation failed"), kind="remote")
        return data

    async def transform(self, midi_files: List[bytes], options: Optional[Dict[str, Any]] = None) -> bytes:
        if not midi_files:
            raise GenerationError("no MIDI files to generate from", kind="invalid_response")

        payload = {
            "midi_files": [_b64(m) for m in midi_files],
            "options": {**DEFAULT_GENERATE_OPTIONS, **(options or {})},
        }
        logger.info("generation_request", extra={"files": len(midi_files), "bytes": sum(len(m) for m in midi_files)})
        data = await self._post("/generate", payload)
        return _unb64(data.get("generated_midi"), "MIDI data")

    async def encode(self, midi: bytes, options: Optional[Dict[str, Any]] = None) -> bytes:
        payload = {
            "midi_data": _b64(midi),
            "options": {**DEFAULT_ENCODE_OPTIONS, **(options or {})},
        }
        data = await self._post("/convert-to-mp3", payload)
        return _unb64(data.get("mp3_data"), "MP3 data")

    async def health(self) -> bool:
        try:
            r = await self._client.get("/health", timeout=5.0)
            return r.status_code == 200
        except httpx.HTTPError as e:
            logger.warning("generation_health_failed", extra={"error": str(e)})
            return False

    async def info(self) -> Optional[Dict[str, Any]]:
        try:
            r = await self._client.get("/info", timeout=10.0)
        except httpx.HTTPError as e:
            logger.warning("generation_info_failed", extra={"error": str(e)})
            return None
        if r.status_code != 200:
            return None
        try:
            data = r.json()
        except ValueError:
            return None
        return data if isinstance(data, dict) else None

    async def close(self) -> None:
        await self._client.aclose()

# ==============================
# Completion Provider (HTTP)
# ==============================
"""
Boundary to the remote completion service.

Wire format:
- POST http://{llm_host}{generate_path}
- body: JSON array of {"role": "system"|"user"|"assistant", "content": str}
- response: {"output": str, "time": float}

Important:
- No environment reads here; host/timeouts come from CompletionConfig.
- Transport failures, non-2xx statuses and malformed bodies raise CompletionError.
"""

from __future__ import annotations

import logging
from typing import List, Optional

import requests
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from intentchat.config.schema import CompletionConfig, Settings
from intentchat.contracts.errors import CompletionError

logger = logging.getLogger("intentchat.completion")


class ChatMessage(BaseModel):
    model_config = ConfigDict(extra="forbid")

    role: str = Field(...)
    content: str = Field(default="")


class CompletionRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    messages: List[ChatMessage] = Field(default_factory=list)


class CompletionResponse(BaseModel):
    model_config = ConfigDict(extra="ignore")

    output: str = Field(...)
    time: Optional[float] = Field(default=None, description="Server-side generation time in seconds")


class CompletionProvider:
    def __init__(self, *, config: Optional[CompletionConfig] = None) -> None:
        self.config = config or CompletionConfig()

    @classmethod
    def from_settings(cls, settings: Settings) -> "CompletionProvider":
        return cls(config=settings.completion)

    @property
    def url(self) -> str:
        host = self.config.llm_host.rstrip("/")
        if not host.startswith(("http://", "https://")):
            host = f"http://{host}"
        path = self.config.generate_path
        return f"{host}{path if path.startswith('/') else '/' + path}"

    def complete(self, request: CompletionRequest) -> CompletionResponse:
        payload = [m.model_dump() for m in request.messages]
        try:
            resp = requests.post(self.url, json=payload, timeout=self.config.timeout_seconds)
        except requests.RequestException as exc:
            raise CompletionError(f"completion service unreachable at {self.url}: {exc}") from exc

        if not resp.ok:
            raise CompletionError(f"completion service returned HTTP {resp.status_code}: {resp.text[:200]}")
        try:
            body = resp.json()
        except ValueError as exc:
            raise CompletionError("completion service returned a non-JSON body") from exc
        try:
            result = CompletionResponse.model_validate(body)
        except ValidationError as exc:
            raise CompletionError(f"completion response missing 'output': {exc.errors()[:1]}") from exc

        logger.debug(f"completion ok in {result.time}s", extra={"op": "complete"})
        return result

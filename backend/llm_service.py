"""
Chat-completion client for poem generation.
"""

import os
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional

import httpx
from pydantic import BaseModel, ConfigDict


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw in (None, ""):
        return default
    try:
        return float(raw)
    except Exception:
        return default


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw in (None, ""):
        return default
    try:
        return int(raw)
    except Exception:
        return default


class LLMConfig(BaseModel):
    """Model runtime configuration."""

    model_config = ConfigDict(protected_namespaces=())

    model_name: str = "llama3.1:8b"
    api_url: Optional[str] = None
    api_key: Optional[str] = None
    provider: Optional[str] = None  # ollama | groq | openai | generic
    temperature: float = 0.9
    max_tokens: int = 1200
    top_p: float = 0.9
    timeout_sec: float = 90.0


class LLMService:
    """Sends role-tagged messages to the configured provider, one attempt per call."""

    def __init__(self, config: Optional[LLMConfig] = None):
        self.config = config or LLMConfig(
            api_url=os.getenv("LLM_API_URL", "http://localhost:11434/api/generate"),
            api_key=os.getenv("LLM_API_KEY"),
            model_name=os.getenv("LLM_MODEL", "llama3.1:8b"),
            provider=os.getenv("LLM_PROVIDER"),
            temperature=_env_float("LLM_TEMPERATURE", 0.9),
            max_tokens=max(64, min(4096, _env_int("LLM_MAX_TOKENS", 1200))),
            timeout_sec=max(5.0, min(300.0, _env_float("LLM_TIMEOUT_SEC", 90.0))),
        )
        self.call_log_path = os.getenv("LLM_CALL_LOG", "llm_call_log.txt")

    def _append_call_log(self, stage: str, status: str, detail: str = "") -> None:
        try:
            p = Path(__file__).resolve().parent / self.call_log_path
            p.parent.mkdir(parents=True, exist_ok=True)
            ts = datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")
            line = f"[{ts}] stage={stage} status={status} model={self.config.model_name} detail={detail}\n"
            with open(p, "a", encoding="utf-8") as f:
                f.write(line)
        except Exception:
            # Call log writes never raise.
            pass

    def _is_openai_compatible(self) -> bool:
        provider = (self.config.provider or "").lower().strip()
        api_url = self.config.api_url or ""
        return (
            provider in ("groq", "openai")
            or "api.groq.com/openai/v1" in api_url
            or "api.openai.com/v1" in api_url
        )

    def _headers(self) -> dict:
        headers = {"Content-Type": "application/json"}
        if self.config.api_key:
            headers["Authorization"] = f"Bearer {self.config.api_key}"
        return headers

    def _build_payload(self, messages: list[dict]) -> dict:
        if self._is_openai_compatible():
            return {
                "model": self.config.model_name,
                "messages": messages,
                "temperature": self.config.temperature,
                "max_tokens": self.config.max_tokens,
                "top_p": self.config.top_p,
            }
        # Ollama-style generate endpoint takes one flat prompt.
        prompt = "\n\n".join(m.get("content", "") for m in messages)
        return {
            "model": self.config.model_name,
            "prompt": prompt,
            "stream": False,
            "options": {
                "temperature": self.config.temperature,
                "num_predict": self.config.max_tokens,
                "top_p": self.config.top_p,
            },
        }

    def _read_content(self, result) -> Optional[str]:
        if self._is_openai_compatible():
            choices = result.get("choices", []) if isinstance(result, dict) else []
            if not choices:
                return None
            return (choices[0].get("message") or {}).get("content")
        if isinstance(result, dict):
            return result.get("response")
        return str(result)

    async def chat(self, messages: list[dict]) -> Optional[str]:
        """Return the model's reply text, or None when no content came back."""
        provider_label = "openai_compatible" if self._is_openai_compatible() else "generic"
        self._append_call_log("request", "start", f"provider={provider_label} messages={len(messages)}")
        try:
            async with httpx.AsyncClient(timeout=self.config.timeout_sec) as client:
                response = await client.post(
                    self.config.api_url or "",
                    json=self._build_payload(messages),
                    headers=self._headers(),
                )
            if response.status_code != 200:
                self._append_call_log("request", "fail", f"http={response.status_code}")
                print(f"LLM API error: http={response.status_code}")
                return None
            content = self._read_content(response.json())
            self._append_call_log("request", "ok", f"chars={len(content or '')}")
            return content
        except Exception as exc:
            self._append_call_log("request", "error", str(exc)[:200])
            print(f"LLM API error: {exc}")
            return None

    async def ask(self, prompt: str) -> Optional[str]:
        """Single system-role message carrying the whole prompt."""
        return await self.chat([{"role": "system", "content": prompt}])


llm_service = LLMService()

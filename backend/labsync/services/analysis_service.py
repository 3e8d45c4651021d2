from __future__ import annotations

from pathlib import Path
from typing import Any, Dict, Optional, Protocol
import json
import logging
import os

from labsync.config import Settings
from labsync.errors import ProviderError, ProviderUnconfigured
from labsync.models.analysis import AnalysisResult, coerce_analysis_dict


logger = logging.getLogger("labsync.analysis")


SYSTEM_PROMPT = (
    "You analyze standup meeting transcripts. Return ONLY strict JSON with keys "
    "'summary' (2-3 sentences), 'actionItems' (array of {\"task\", \"assignee\"}), "
    "'blockers' (array of {\"issue\", \"severity\": \"low\"|\"medium\"|\"high\"}) and "
    "'updates' (array of short status update strings). Use null for an unknown "
    "assignee and empty arrays when nothing applies."
)


def build_user_prompt(transcript: str) -> str:
    return "Please analyze this standup transcript:\n\n" + transcript


class LanguageModelProvider(Protocol):
    name: str

    def is_configured(self) -> bool: ...

    def complete_json(self, system: str, user: str) -> str: ...


class OpenAIAnalysisProvider:
    name = "openai"

    def __init__(self, settings: Settings) -> None:
        self._api_key = settings.openai_api_key
        self._model = settings.openai_analysis_model
        self._client = None

    def is_configured(self) -> bool:
        return bool(self._api_key)

    def _get_client(self):
        if self._client is None:
            from openai import OpenAI

            self._client = OpenAI(api_key=self._api_key)
        return self._client

    def complete_json(self, system: str, user: str) -> str:
        completion = self._get_client().chat.completions.create(
            model=self._model,
            messages=[
                {"role": "system", "content": system},
                {"role": "user", "content": user},
            ],
            response_format={"type": "json_object"},
            temperature=0.3,
            max_tokens=2000,
        )
        content = completion.choices[0].message.content if completion.choices else None
        if not content:
            raise RuntimeError("No response from language model")
        return str(content)


_JSON_GBNF = r"""
root   ::= object
value  ::= object | array | string | number | ("true" | "false" | "null") ws

object ::=
  "{" ws (
            string ":" ws value
    ("," ws string ":" ws value)*
  )? "}" ws

array  ::=
  "[" ws (
            value
    ("," ws value)*
  )? "]" ws

string ::=
  "\"" (
    [^"\\] |
    "\\" (["\\/bfnrt] | "u" [0-9a-fA-F] [0-9a-fA-F] [0-9a-fA-F] [0-9a-fA-F]) # escapes
  )* "\"" ws

number ::= ("-"? ([0-9] | [1-9] [0-9]*)) ("." [0-9]+)? ([eE] [-+]? [0-9]+)? ws

ws ::= ([ \t\n] ws)?
"""


class LlamaAnalysisProvider:
    """Local analysis with llama-cpp-python and a JSON grammar."""

    name = "llama"

    def __init__(self, settings: Settings, n_ctx: int = 16384, max_tokens: int = 2048) -> None:
        self._model_path = settings.llm_model_path
        self._n_ctx = n_ctx
        self._max_tokens = max_tokens
        self._llm = None
        self._grammar = None

    def _resolved_path(self) -> Optional[Path]:
        if not self._model_path:
            return None
        return Path(os.path.expandvars(self._model_path)).expanduser()

    def is_configured(self) -> bool:
        path = self._resolved_path()
        return path is not None and path.exists()

    def _ensure_llm(self):
        if self._llm is None:
            from llama_cpp import Llama, LlamaGrammar  # type: ignore

            self._llm = Llama(model_path=str(self._resolved_path()), n_ctx=self._n_ctx, verbose=False)
            self._grammar = LlamaGrammar.from_string(_JSON_GBNF)
        return self._llm

    def complete_json(self, system: str, user: str) -> str:
        llm = self._ensure_llm()
        kwargs: Dict[str, Any] = {
            "messages": [
                {"role": "system", "content": system},
                {"role": "user", "content": user},
            ],
            "temperature": 0.2,
            "max_tokens": self._max_tokens,
        }
        if self._grammar is not None:
            kwargs["grammar"] = self._grammar
        else:
            kwargs["response_format"] = {"type": "json_object"}
        resp = llm.create_chat_completion(**kwargs)
        return str(resp["choices"][0]["message"]["content"])


def build_analysis_provider(settings: Settings) -> LanguageModelProvider:
    if settings.llm_provider == "llama":
        return LlamaAnalysisProvider(settings)
    return OpenAIAnalysisProvider(settings)


def parse_json_lenient(text: str) -> Any:
    t = (text or "").strip()
    try:
        return json.loads(t)
    except ValueError:
        pass
    # Try to extract the first {...} block
    start = t.find("{")
    end = t.rfind("}")
    if start != -1 and end != -1 and end > start:
        try:
            return json.loads(t[start : end + 1])
        except ValueError:
            pass
    return None


class AnalysisEngine:
    """Obtains a schema-conformant AnalysisResult from a language model provider.

    A malformed or partial response degrades to empty fields rather than failing.
    Provider exceptions (network, quota, refusals) surface as ProviderError.
    """

    def __init__(self, provider: LanguageModelProvider) -> None:
        self._provider = provider

    @property
    def is_configured(self) -> bool:
        return self._provider.is_configured()

    def analyze(self, transcript: str) -> AnalysisResult:
        if not self._provider.is_configured():
            raise ProviderUnconfigured(
                f"Language model provider '{self._provider.name}' is not configured"
            )
        try:
            content = self._provider.complete_json(SYSTEM_PROMPT, build_user_prompt(transcript))
        except Exception as exc:
            logger.warning("Analysis failed: %s", exc)
            raise ProviderError(f"Analysis failed: {exc}") from exc

        data = parse_json_lenient(content)
        if not isinstance(data, dict):
            logger.warning("Analysis response was not a JSON object; using empty result")
        result = coerce_analysis_dict(data)
        logger.info(
            "Transcript analyzed",
            extra={
                "action_items": len(result.action_items),
                "blockers": len(result.blockers),
                "updates": len(result.updates),
            },
        )
        return result

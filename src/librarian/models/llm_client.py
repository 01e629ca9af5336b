"""Typed client base class for the language models used to expand queries."""

from __future__ import annotations

import json
import re
import time
from dataclasses import MISSING, dataclass, field, fields, is_dataclass
from typing import Any, Dict, Generic, Optional, Type, TypeVar

from pydantic import ValidationError
from pydantic.type_adapter import TypeAdapter

__all__ = [
    "LLMClient",
    "LLMClientError",
    "LLMRequest",
    "LLMResponseFormatError",
    "LLMRetryError",
    "LLMTransportError",
]


T = TypeVar("T")


class LLMClientError(RuntimeError):
    """Base error raised for structured LLM client failures."""


class LLMTransportError(LLMClientError):
    """Raised when the underlying transport fails to return a response."""


class LLMResponseFormatError(LLMClientError):
    """Raised when the model returns payload that is not valid JSON."""


class LLMRetryError(LLMClientError):
    """Raised after exhausting retries due to repeated validation failures."""


def _close_schema(value: Any) -> Any:
    """Recursively tighten JSON Schema objects to disallow unknown keys."""
    if isinstance(value, dict):
        if value.get("type") == "object":
            value["additionalProperties"] = False
            properties = value.get("properties")
            if isinstance(properties, dict):
                value["required"] = list(properties.keys())
        for key, child in list(value.items()):
            value[key] = _close_schema(child)
    elif isinstance(value, list):
        return [_close_schema(item) for item in value]
    return value


@dataclass(slots=True)
class LLMRequest(Generic[T]):
    """Typed request payload sent to an LLM."""

    prompt: str
    response_model: Type[T]
    model: Optional[str] = None
    system_prompt: Optional[str] = None
    metadata: Dict[str, Any] = field(default_factory=dict)
    temperature: float = 0.0
    max_attempts: Optional[int] = None

    def to_payload(self, default_model: str) -> Dict[str, Any]:
        """Render a transport-ready payload for the JSON responses API."""
        messages: list[Dict[str, Any]] = []
        if self.system_prompt:
            messages.append(_message("system", self.system_prompt))
        messages.append(_message("user", self.prompt))

        schema_name = getattr(self.response_model, "__name__", "librarian_response")
        schema = _close_schema(TypeAdapter(self.response_model).json_schema())
        payload: Dict[str, Any] = {
            "model": self.model or default_model,
            "input": messages,
            "text": {
                "format": {
                    "type": "json_schema",
                    "name": schema_name,
                    "schema": schema,
                    "strict": True,
                }
            },
        }
        if self.temperature not in (None, 0.0):
            payload["temperature"] = self.temperature
        if self.metadata:
            payload["metadata"] = {
                key: value if isinstance(value, str) else json.dumps(value, sort_keys=True)[:512]
                for key, value in self.metadata.items()
            }
        return payload


def _message(role: str, text: str) -> Dict[str, Any]:
    return {"role": role, "content": [{"type": "input_text", "text": text}]}


class LLMClient:
    """High-level helper that enforces JSON responses and schema validation."""

    def __init__(self, model: str, *, max_attempts: int = 3, retry_delay: float = 0.5) -> None:
        self._model = model
        self._max_attempts = max_attempts
        self._retry_delay = retry_delay

    @property
    def model(self) -> str:
        """Return the default model name configured for this client."""
        return self._model

    def invoke(self, request: LLMRequest[T]) -> T:
        """Invoke the underlying model and return a validated response."""
        attempts = request.max_attempts or self._max_attempts
        adapter = TypeAdapter(request.response_model)
        last_error: Optional[Exception] = None

        for attempt in range(1, attempts + 1):
            try:
                raw = self._raw_invoke(request.to_payload(self._model))
                data = self._parse_json(raw)
                data = _wrap_bare_list(request.response_model, data)
                return adapter.validate_python(_hydrate(request.response_model, data))
            except (LLMResponseFormatError, ValidationError, LLMTransportError) as error:
                last_error = error
                if attempt >= attempts:
                    break
                time.sleep(self._retry_delay)

        raise LLMRetryError(
            f"Failed to produce schema-valid JSON after {attempts} attempt(s) for model "
            f"{request.model or self._model}"
        ) from last_error

    def _raw_invoke(self, payload: Dict[str, Any]) -> str:
        """Perform the transport call. Subclasses must implement."""
        raise NotImplementedError("Subclasses must implement _raw_invoke().")

    @staticmethod
    def _parse_json(raw_response: str) -> Any:
        """Parse JSON payloads and normalize errors."""
        text = raw_response.strip()
        if not text:
            raise LLMResponseFormatError("Model returned an empty response.")
        candidates = [text]
        repaired = _repair_json_payload(text)
        if repaired and repaired not in candidates:
            candidates.append(repaired)
        for candidate in candidates:
            try:
                return json.loads(candidate)
            except json.JSONDecodeError:
                continue
        raise LLMResponseFormatError(f"Model returned invalid JSON: {text[:200]}")


def _strip_code_fence(payload: str) -> str:
    """Remove Markdown-style code fences that wrap JSON payloads."""
    match = re.match(r"```(?:json)?\s*\n(.*?)```", payload, re.IGNORECASE | re.DOTALL)
    return match.group(1).strip() if match else payload


def _repair_json_payload(raw: str) -> str | None:
    """Attempt to salvage the first JSON value embedded in noisy output."""
    stripped = _strip_code_fence(raw.strip())
    opening_idx = None
    expected: list[str] = []
    for index, char in enumerate(stripped):
        if char in "{[":
            if opening_idx is None:
                opening_idx = index
            expected.append("}" if char == "{" else "]")
        elif expected and char == expected[-1]:
            expected.pop()
            if not expected and opening_idx is not None:
                candidate = stripped[opening_idx : index + 1]
                return re.sub(r",(\s*[}\]])", r"\1", candidate)
    return stripped if stripped != raw.strip() else None


def _hydrate(model: Type[Any], payload: Any) -> Any:
    """Populate missing dataclass fields with their defaults."""
    if not isinstance(payload, dict) or not is_dataclass(model):
        return payload
    updated = dict(payload)
    for field_info in fields(model):
        if field_info.name in updated:
            continue
        if field_info.default is not MISSING:
            updated[field_info.name] = field_info.default
        elif field_info.default_factory is not MISSING:  # type: ignore[attr-defined]
            updated[field_info.name] = field_info.default_factory()  # type: ignore[misc]
    return updated


def _wrap_bare_list(model: Type[Any], payload: Any) -> Any:
    """Accept ``[...]`` for dataclasses whose only field is a list."""
    if not isinstance(payload, list) or not is_dataclass(model):
        return payload
    model_fields = fields(model)
    if len(model_fields) != 1:
        return payload
    return {model_fields[0].name: payload}

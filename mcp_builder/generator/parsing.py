"""Recovering structured JSON from free-form model replies.

Models wrap JSON in markdown fences, prefix it with prose, or append
commentary. ``parse_model_json`` tries four strategies in order and raises
``GenerationContractError`` only when all of them fail.
"""

from __future__ import annotations

import json
import re
from typing import Any

from pydantic import ValidationError

from ..errors import GenerationContractError
from ..models import AuthMethod, Endpoint, GenerationResult, ToolDefinition

FENCE_RE = re.compile(r"```[\w+-]*[ \t]*\n?(.*?)```", re.DOTALL)

_decoder = json.JSONDecoder()


def _from_fence(text: str) -> Any:
    match = FENCE_RE.search(text)
    if not match:
        raise ValueError("no fenced block")
    return json.loads(match.group(1).strip())


def _from_raw(text: str) -> Any:
    return json.loads(text)


def _from_outer_braces(text: str) -> Any:
    start = text.find("{")
    end = text.rfind("}") + 1
    if start < 0 or end <= start:
        raise ValueError("no braces")
    return json.loads(text[start:end])


def _from_first_value(text: str) -> Any:
    for match in re.finditer(r"[\[{]", text):
        try:
            value, _ = _decoder.raw_decode(text, match.start())
        except json.JSONDecodeError:
            continue
        return value
    raise ValueError("no JSON value")


STRATEGIES = (_from_fence, _from_raw, _from_outer_braces, _from_first_value)


def parse_model_json(text: str) -> Any:
    """Parse the JSON payload of a model reply.

    Args:
        text: Raw model output

    Returns:
        The decoded object or array

    Raises:
        GenerationContractError: If no strategy yields valid JSON
    """
    stripped = text.strip()
    for strategy in STRATEGIES:
        try:
            return strategy(stripped)
        except ValueError:
            # json.JSONDecodeError is a ValueError subclass
            continue
    raise GenerationContractError(
        f"Failed to parse model response as JSON. Response started with: {text[:100]}",
        raw=text,
    )


def endpoint_from_reply(data: dict[str, Any]) -> Endpoint:
    """Build an Endpoint from a model-produced endpoint dict."""
    return Endpoint(
        path=str(data.get("path") or "/"),
        method=str(data.get("method") or "GET").upper(),
        operation_id=data.get("operationId") or data.get("operation_id"),
        summary=data.get("summary") or "",
        description=data.get("description") or "",
        parameters=[p for p in data.get("parameters") or [] if isinstance(p, dict)],
        request_body=data.get("requestBody"),
        responses=data.get("responses") or ({"200": data["response"]} if isinstance(data.get("response"), dict) else {}),
    )


def auth_method_from_reply(value: Any) -> AuthMethod:
    try:
        return AuthMethod(str(value).lower())
    except ValueError:
        return AuthMethod.UNKNOWN


def parse_generation_result(text: str) -> GenerationResult:
    """Parse and validate the ``{code, tools}`` generation contract.

    Raises:
        GenerationContractError: On unparsable JSON or a reply missing required fields
    """
    data = parse_model_json(text)
    if not isinstance(data, dict):
        raise GenerationContractError(
            f"Expected a JSON object, got {type(data).__name__}. Response started with: {text[:100]}",
            raw=text,
        )

    code = data.get("code")
    if not isinstance(code, str) or not code.strip():
        raise GenerationContractError("Model response is missing the 'code' field", raw=text)

    raw_tools = data.get("tools") or []
    if not isinstance(raw_tools, list):
        raise GenerationContractError("Model response field 'tools' must be a list", raw=text)
    try:
        tools = [ToolDefinition.model_validate(t) for t in raw_tools]
    except ValidationError as e:
        raise GenerationContractError(f"Invalid tool definition in model response: {e}", raw=text) from e

    return GenerationResult(
        code=code,
        tools=tools,
        name=data.get("name"),
        description=data.get("description"),
        base_url=data.get("baseUrl"),
        auth_method=auth_method_from_reply(data["authMethod"]) if data.get("authMethod") else None,
        endpoints=[endpoint_from_reply(e) for e in data.get("endpoints") or [] if isinstance(e, dict)],
    )


def parse_repository_analysis(text: str) -> dict[str, Any]:
    """Parse the repository-analysis reply into normalized fields.

    Returns:
        Dict with name, description, base_url, auth_method and endpoints
    """
    data = parse_model_json(text)
    if not isinstance(data, dict):
        raise GenerationContractError(
            f"Expected a JSON object, got {type(data).__name__}. Response started with: {text[:100]}",
            raw=text,
        )
    return {
        "name": data.get("name") or "",
        "description": data.get("description") or "",
        "base_url": data.get("baseUrl") or "",
        "auth_method": auth_method_from_reply(data.get("authMethod")),
        "endpoints": [endpoint_from_reply(e) for e in data.get("endpoints") or [] if isinstance(e, dict)],
    }

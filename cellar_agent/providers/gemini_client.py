"""Gemini Provider 适配器。

本模块负责：

1. 接收统一的 ModelRequest。
2. 将其转换为 Gemini 代理服务的请求格式
   （{model, contents, systemInstruction, tools: [{functionDeclarations}]}）。
3. 调用 HTTP 接口并处理网络/API 异常。
4. 将响应 {text, functionCalls, candidateContent} 解析为统一的 ModelResponse。

代理服务只做转发，模型白名单和轮次上限在本地提前校验一次，
避免把注定失败的请求发出去。
"""

import json
from typing import Any, AsyncIterator, Dict, List
from uuid import uuid4

import httpx

from cellar_agent.domain.exceptions import ApiError, NetworkError, RateLimitError, ValidationError
from cellar_agent.domain.models import (
    FunctionCall,
    FunctionResponse,
    InlineData,
    ModelRequest,
    ModelResponse,
    Part,
    Turn,
)
from cellar_agent.providers.registry import (
    ALLOWED_MODELS,
    GEMINI_CONFIG,
    MAX_BODY_SIZE,
    MAX_CONTENTS,
    resolve_model,
)
from cellar_agent.tools.definitions import ToolCall, ToolDef


class GeminiClient:
    """Gemini 代理客户端。

    - name: Provider 名称（供日志/调试使用）。
    - generate: 非流式调用，返回 ModelResponse（含函数调用）。
    - stream_text: 流式调用，逐段产出文本，供结构化流式接口使用。
    """

    name = "gemini"

    def __init__(self, settings):
        self._settings = settings

    @property
    def _base_url(self) -> str:
        return (getattr(self._settings, "gemini_base_url", None) or GEMINI_CONFIG.base_url).rstrip("/")

    def _headers(self) -> Dict[str, str]:
        headers = {"Content-Type": "application/json"}
        api_key = getattr(self._settings, "gemini_api_key", None)
        if api_key:
            headers["Authorization"] = f"Bearer {api_key}"
        return headers

    def generate(self, req: ModelRequest) -> ModelResponse:
        """执行一次非流式调用。

        步骤：
        1. 解析逻辑模型名并校验白名单、contents 长度。
        2. 构造 HTTP 请求 payload。
        3. 发送请求并捕获网络错误/限流/服务端错误。
        4. 解析为 ModelResponse。
        """

        payload = self._build_payload(req)
        try:
            with httpx.Client(timeout=self._settings.http_timeout, trust_env=False) as client:
                resp = client.post(f"{self._base_url}/gemini", json=payload, headers=self._headers())
        except httpx.RequestError as e:
            raise NetworkError(code="NETWORK_ERROR", message=str(e))
        if resp.status_code == 429:
            # 配额/限流：上层只做一次友好提示，不重试
            raise RateLimitError(code="RATE_LIMIT", message="Gemini quota exceeded", http_status=429)
        if resp.status_code >= 400:
            raise ApiError(code="API_ERROR", message=resp.text, http_status=resp.status_code)
        try:
            data = resp.json()
        except json.JSONDecodeError as e:
            raise ApiError(code="API_BAD_RESPONSE", message=str(e), http_status=resp.status_code)
        return self._parse_response(data)

    async def stream_text(self, req: ModelRequest) -> AsyncIterator[str]:
        """流式调用，逐段产出模型文本。

        代理以 SSE 形式返回 `data: {"text": "..."}`，以 `data: [DONE]` 结束。
        """

        payload = self._build_payload(req)
        try:
            async with httpx.AsyncClient(timeout=self._settings.http_timeout, trust_env=False) as client:
                async with client.stream(
                    "POST",
                    f"{self._base_url}/gemini/stream",
                    json=payload,
                    headers=self._headers(),
                ) as resp:
                    if resp.status_code == 429:
                        raise RateLimitError(code="RATE_LIMIT", message="Gemini quota exceeded", http_status=429)
                    if resp.status_code >= 400:
                        body = await resp.aread()
                        raise ApiError(
                            code="API_ERROR",
                            message=body.decode("utf-8", errors="replace"),
                            http_status=resp.status_code,
                        )
                    async for line in resp.aiter_lines():
                        if not line:
                            continue
                        data_str = line[5:].strip() if line.startswith("data:") else line.strip()
                        if not data_str:
                            continue
                        if data_str == "[DONE]":
                            break
                        try:
                            chunk = json.loads(data_str)
                        except json.JSONDecodeError:
                            continue
                        text = chunk.get("text") if isinstance(chunk, dict) else None
                        if text:
                            yield text
        except httpx.RequestError as e:
            raise NetworkError(code="NETWORK_ERROR", message=str(e))

    def _build_payload(self, req: ModelRequest) -> Dict[str, Any]:
        """将 ModelRequest 转成代理所需的请求 JSON，并做本地校验。"""

        model = resolve_model(GEMINI_CONFIG, req.model)
        if model not in ALLOWED_MODELS:
            raise ValidationError(
                code="MODEL_NOT_ALLOWED",
                message=f"Invalid model. Allowed: {', '.join(sorted(ALLOWED_MODELS))}",
            )
        if not req.contents:
            raise ValidationError(code="EMPTY_CONTENTS", message="Missing or empty contents array")
        if len(req.contents) > MAX_CONTENTS:
            raise ValidationError(code="TOO_MANY_TURNS", message=f"Too many turns (max {MAX_CONTENTS})")

        payload: Dict[str, Any] = {
            "model": model,
            "contents": [self.turn_to_payload(t) for t in req.contents],
        }
        if req.system_instruction:
            payload["systemInstruction"] = req.system_instruction
        if req.tools:
            payload["tools"] = [{"functionDeclarations": [self._serialize_tool(t) for t in req.tools]}]

        size = len(json.dumps(payload, ensure_ascii=False))
        if size > MAX_BODY_SIZE:
            raise ValidationError(
                code="REQUEST_TOO_LARGE",
                message=f"Request too large ({size} bytes, max {MAX_BODY_SIZE})",
            )
        return payload

    def _parse_response(self, data: Dict[str, Any]) -> ModelResponse:
        """将代理响应解析为 ModelResponse。

        functionCalls 为空或 candidateContent 缺失时，
        ModelResponse.can_resubmit_tools 为 False，上层按最终回答处理。
        """

        tool_calls: List[ToolCall] = []
        for idx, call in enumerate(data.get("functionCalls") or []):
            tool_calls.append(
                ToolCall(
                    id=call.get("id") or f"call_{uuid4().hex[:8]}_{idx}",
                    name=call.get("name") or "",
                    arguments=self._parse_arguments(call.get("args")),
                )
            )
        candidate = data.get("candidateContent")
        return ModelResponse(
            text=data.get("text") or "",
            tool_calls=tool_calls,
            candidate_content=self.turn_from_payload(candidate) if candidate else None,
            raw=data,
        )

    def _serialize_tool(self, tool: ToolDef) -> Dict[str, Any]:
        """把内部的 ToolDef 转成 Gemini functionDeclaration。"""

        properties: Dict[str, Any] = {}
        required: List[str] = []
        for name, param in tool.params.items():
            properties[name] = dict(param.schema or {"type": "STRING"})
            if param.description:
                properties[name]["description"] = param.description
            if param.required:
                required.append(name)
        parameters: Dict[str, Any] = {"type": "OBJECT", "properties": properties}
        if required:
            parameters["required"] = required
        return {"name": tool.name, "description": tool.description, "parameters": parameters}

    @staticmethod
    def _parse_arguments(raw: Any) -> Dict[str, Any]:
        """Gemini 直接返回 dict；个别代理会把 args 序列化成字符串。"""

        if isinstance(raw, dict):
            return raw
        if isinstance(raw, str):
            try:
                parsed = json.loads(raw)
            except json.JSONDecodeError:
                return {"_raw": raw}
            return parsed if isinstance(parsed, dict) else {"_raw": raw}
        return {}

    @staticmethod
    def turn_to_payload(turn: Turn) -> Dict[str, Any]:
        parts: List[Dict[str, Any]] = []
        for part in turn.parts:
            if part.text is not None:
                parts.append({"text": part.text})
            elif part.inline_data is not None:
                parts.append({"inlineData": {"mimeType": part.inline_data.mime_type, "data": part.inline_data.data}})
            elif part.function_call is not None:
                fc: Dict[str, Any] = {"name": part.function_call.name, "args": part.function_call.args}
                if part.function_call.id:
                    fc["id"] = part.function_call.id
                parts.append({"functionCall": fc})
            elif part.function_response is not None:
                fr: Dict[str, Any] = {"name": part.function_response.name, "response": part.function_response.response}
                if part.function_response.id:
                    fr["id"] = part.function_response.id
                parts.append({"functionResponse": fr})
        return {"role": turn.role, "parts": parts}

    @staticmethod
    def turn_from_payload(payload: Dict[str, Any]) -> Turn:
        parts: List[Part] = []
        for raw in payload.get("parts") or []:
            if "functionCall" in raw:
                fc = raw["functionCall"] or {}
                parts.append(
                    Part(function_call=FunctionCall(name=fc.get("name") or "", args=fc.get("args") or {}, id=fc.get("id")))
                )
            elif "functionResponse" in raw:
                fr = raw["functionResponse"] or {}
                parts.append(
                    Part(
                        function_response=FunctionResponse(
                            name=fr.get("name") or "", response=fr.get("response") or {}, id=fr.get("id")
                        )
                    )
                )
            elif "inlineData" in raw:
                data = raw["inlineData"] or {}
                parts.append(Part(inline_data=InlineData(mime_type=data.get("mimeType") or "", data=data.get("data") or "")))
            elif "text" in raw:
                parts.append(Part(text=raw.get("text") or ""))
        role = payload.get("role") or "model"
        return Turn(role=role, parts=parts)


"""
Place extraction from free-form trip notes.

The notes are sent to an OpenAI-compatible chat model which returns
each mentioned place with its city, category and the sentence that
mentions it. Coordinates are never requested from the model; they come
from the geocoder afterwards. Ids are generated here, never taken from
the model output.
"""

from __future__ import annotations

import json
import logging
import time
from typing import Any, List, Optional

import openai
from openai import OpenAI

from tripspot.errors import ExtractionMalformed, ExtractionUnavailable
from tripspot.llm import client_session, model_name
from tripspot.models import Place, Settings, new_place_id, normalise_category

logger = logging.getLogger(__name__)

SYSTEM_PROMPT = "你是一个专业的地点提取助手，请严格按照要求的JSON格式返回结果，不要包含其他文字。"

PROMPT_TEMPLATE = """你是一个智能旅行助手。请从下面的文本中提取具体的地点。
对每个地点给出名称、所在城市、类型（景点 spot / 美食 food / 住宿 hotel / 其他 other）以及原文中关于它的描述。
不要编造坐标，坐标会由地图服务提供。

返回一个JSON对象，格式为 {{"locations": [...]}}，数组中每个元素包含：
- name: 地点名称，例如 "都江堰景区"
- city: 城市名称，例如 "成都"
- type: 取值为 "spot"、"food"、"hotel"、"other" 之一
- context: 原文中关于该地点的描述

待解析文本: "{text}"
"""

_WRAPPER_KEYS = ("locations", "places", "data")


def build_prompt(text: str) -> str:
    return PROMPT_TEMPLATE.format(text=text)


def _create_completion(client: OpenAI, model: str, messages: List[dict]):
    try:
        return client.chat.completions.create(
            model=model,
            messages=messages,
            temperature=0.1,
            response_format={"type": "json_object"},
        )
    except openai.BadRequestError as exc:
        # Some compatible servers reject response_format; ask again without it.
        if "response_format" not in str(exc):
            raise
        logger.warning("Model %s rejected response_format, retrying without it", model)
        return client.chat.completions.create(
            model=model,
            messages=messages,
            temperature=0.1,
        )


def _items_from_payload(content: str) -> List[Any]:
    try:
        data = json.loads(content)
    except (TypeError, ValueError):
        raise ExtractionMalformed("Place extraction returned invalid JSON") from None
    if isinstance(data, dict):
        for key in _WRAPPER_KEYS:
            if isinstance(data.get(key), list):
                return data[key]
        raise ExtractionMalformed("Place extraction returned an object without a place list")
    if isinstance(data, list):
        return data
    raise ExtractionMalformed("Place extraction returned an unexpected JSON value")


def parse_places(content: str) -> List[Place]:
    """Turn the model's JSON answer into unlocated places with fresh ids."""
    items = _items_from_payload(content)
    if not all(isinstance(item, dict) for item in items):
        raise ExtractionMalformed("Place extraction returned entries that are not objects")

    places = []
    for item in items:
        name = str(item.get("name") or "").strip()
        if not name:
            logger.warning("Ignoring extracted entry without a name")
            continue
        places.append(
            Place(
                id=new_place_id(),
                name=name,
                city=str(item.get("city") or "").strip(),
                category=normalise_category(item.get("type")),
                note=str(item.get("context") or ""),
            )
        )
    return places


def extract_places(text: str, settings: Settings, client: Optional[OpenAI] = None) -> List[Place]:
    """Extract unlocated places from ``text``.

    Raises:
        ValueError: ``text`` is empty.
        ConfigurationError: No LLM key is configured.
        ExtractionUnavailable: The LLM service failed or refused the request.
        ExtractionMalformed: The answer was not the expected JSON shape.
    """
    if not text or not text.strip():
        raise ValueError("text to extract places from must not be empty")
    model = model_name(settings)
    messages = [
        {"role": "system", "content": SYSTEM_PROMPT},
        {"role": "user", "content": build_prompt(text)},
    ]

    logger.debug("Extracting places with model=%s from %d characters", model, len(text))
    started = time.monotonic()
    try:
        with client_session(settings, client) as session:
            response = _create_completion(session, model, messages)
    except openai.OpenAIError as exc:
        logger.error("Place extraction request failed: %s", exc)
        raise ExtractionUnavailable(f"Place extraction failed: {exc}") from exc

    content = response.choices[0].message.content if response.choices else None
    places = parse_places(content or "[]")
    logger.info("Extracted %d places in %.2fs", len(places), time.monotonic() - started)
    return places

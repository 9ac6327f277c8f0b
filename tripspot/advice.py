"""Short natural-language summaries for a planned route.

The summary is a nice-to-have: every failure (missing key, network,
unexpected answer) turns into a fixed fallback text so route planning
never fails because of it.
"""

from __future__ import annotations

import logging
from typing import Optional, Sequence

from openai import OpenAI

from tripspot.llm import client_session, model_name
from tripspot.models import Place, Settings

logger = logging.getLogger(__name__)

FALLBACK_ADVICE = "行程已生成，但建议加载失败。"
EMPTY_ADVICE = "暂无行程建议"

SYSTEM_PROMPT = "你是一个专业的旅行导游，擅长提供简洁实用的行程建议。"

PROMPT_TEMPLATE = """以下是已经按最短路径规划好的行程顺序，总预估通勤时间为 {minutes} 分钟：
{stops}

请用中文生成一段简短、连贯的行程建议。
风格要求：极简、干练、实体感，例如“建议早上先去A，中午在B吃饭……”。
字数控制在100字以内。
"""


def build_prompt(ordered: Sequence[Place], total_minutes: float) -> str:
    stops = "\n".join(
        f"{index}. {place.name} ({place.category}) - {place.note}"
        for index, place in enumerate(ordered, start=1)
    )
    return PROMPT_TEMPLATE.format(minutes=round(total_minutes), stops=stops)


def advise(
    ordered: Sequence[Place],
    total_minutes: float,
    settings: Settings,
    client: Optional[OpenAI] = None,
) -> str:
    """Return a short planning summary, or ``FALLBACK_ADVICE`` on any failure."""
    try:
        with client_session(settings, client) as session:
            response = session.chat.completions.create(
                model=model_name(settings),
                messages=[
                    {"role": "system", "content": SYSTEM_PROMPT},
                    {"role": "user", "content": build_prompt(ordered, total_minutes)},
                ],
                temperature=0.7,
                max_tokens=200,
            )
        content = response.choices[0].message.content
    except Exception:
        logger.exception("Route advice generation failed")
        return FALLBACK_ADVICE
    if not content or not content.strip():
        return EMPTY_ADVICE
    return content.strip()


class Advisor:
    """Binds ``advise`` to a settings snapshot for the route optimiser."""

    def __init__(self, settings: Settings, client: Optional[OpenAI] = None) -> None:
        self.settings = settings
        self.client = client

    def __call__(self, ordered: Sequence[Place], total_minutes: float) -> str:
        return advise(ordered, total_minutes, self.settings, self.client)

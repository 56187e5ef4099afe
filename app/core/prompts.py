"""Prompt constants for article summaries.

The chat-style providers (OpenAI and generic Qwen endpoints) receive a system
prompt followed by the raw article. The Anthropic path sends a single user
message with a fixed instruction prefix and ignores the configured prompt.
"""
from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from app.core.llm_providers import ProviderConfig


DEFAULT_SYSTEM_PROMPT = """# Role: 信息总结专家

## Profile
- author: LangGPT
- version: 1.0
- language: 中文
- description: 专注于从网页信息中提取有用或有趣的内容，进行简洁的总结。

## Skills
- 高效提取关键信息
- 总结并压缩内容，突出精华
- 确保总结不超过指定字数

## Background:
- 用户提供的网页来源于RSS订阅源，内容类型多样。

## Goals:
- 提取网页中的有用或有趣的内容，字数不超过150字。

## OutputFormat:
- 提供简洁且具有信息密度的总结，避免赘述。

## Rules:
1. 提取最有价值的信息
2. 总结的字数控制在150字以内
3. 保持内容的准确性和趣味性

## Workflows:
1. 用户提供网页链接或内容。
2. 提取并总结出关键点。
3. 输出精简而富有价值的总结。
4. 使用markdown输出，并且加粗重点部分，在摘要最开始的部分输出2-4个文章标签关键词。"""

# Fixed instruction for the Anthropic messages path
ANTHROPIC_PREAMBLE = "请总结以下文章的主要内容："


def resolve_system_prompt(config: "ProviderConfig") -> str:
    """Return the configured system prompt, or the built-in one if unset."""
    if config.system_prompt and config.system_prompt.strip():
        return config.system_prompt
    return DEFAULT_SYSTEM_PROMPT


def build_chat_messages(system_prompt: str, content: str) -> list[dict[str, str]]:
    return [
        {"role": "system", "content": system_prompt},
        {"role": "user", "content": content},
    ]


def build_anthropic_messages(content: str) -> list[dict[str, str]]:
    return [{"role": "user", "content": ANTHROPIC_PREAMBLE + content}]

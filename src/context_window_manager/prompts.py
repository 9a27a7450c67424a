# context_window_manager/prompts.py
"""
Summarization prompt templates.

Backends receive ``(text, retention_ratio)`` and build their request from
these templates, so every backend aims at the same target length.
"""

from __future__ import annotations

import math

SUMMARIZATION_SYSTEM_PROMPT = """You are a precise summarization assistant. Your task is to condense conversation history while preserving:
- Key plot points and story developments
- Character states, emotions, and relationships
- Important dialogue and interactions
- Scene settings and context
- Any significant events or decisions

Focus on factual content. Remove redundancy but keep essential narrative information."""

CHUNK_PROMPT_TEMPLATE = """Summarize the following conversation segment. Original length: {original_length} chars. Target: ~{target_length} chars ({percent}% retention).

Preserve key information:
- Important events and decisions
- Character emotions and relationships
- Critical dialogue
- Plot developments

Conversation:
{text}"""

ROUTER_PROMPT_TEMPLATE = """Summarize the following conversation to approximately {percent}% of its original length (~{target_length} characters).

Conversation:
{text}

Provide a comprehensive summary that captures all important information:"""

# Instruction-tuned local models
INSTRUCT_PROMPT_TEMPLATE = """[INST] Summarize the key events from the following text. Aim for about {target_length} characters.
{text}
[/INST]
Summary:"""


def target_length(text: str, retention_ratio: float) -> int:
    """Characters a summary of ``text`` should aim for."""
    return math.ceil(len(text) * retention_ratio)


def _fields(text: str, retention_ratio: float) -> dict[str, object]:
    return {
        "text": text,
        "original_length": len(text),
        "target_length": target_length(text, retention_ratio),
        "percent": round(retention_ratio * 100),
    }


def build_chunk_prompt(text: str, retention_ratio: float) -> str:
    return CHUNK_PROMPT_TEMPLATE.format(**_fields(text, retention_ratio))


def build_router_prompt(text: str, retention_ratio: float) -> str:
    return ROUTER_PROMPT_TEMPLATE.format(**_fields(text, retention_ratio))


def build_instruct_prompt(text: str, retention_ratio: float) -> str:
    return INSTRUCT_PROMPT_TEMPLATE.format(**_fields(text, retention_ratio))

"""Prompt construction for the completion service."""

from __future__ import annotations

DEFAULT_MAX_TURNS = 20


def build_messages(
    system_prompt: str,
    history: list[dict[str, str]],
    user_message: str,
    max_turns: int = DEFAULT_MAX_TURNS,
) -> list[dict[str, str]]:
    """System instruction, stored history and the new message, trimmed.

    The result always starts with the system message, followed by at most
    *max_turns* of the most recent turns (the new user message included).
    """
    turns = [{"role": turn["role"], "content": turn["content"]} for turn in history]
    turns.append({"role": "user", "content": user_message})
    if len(turns) > max_turns:
        turns = turns[-max_turns:]
    return [{"role": "system", "content": system_prompt}, *turns]

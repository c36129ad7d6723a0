"""Prompt templates for grounded chat answers.

Keeping prompts in one place makes them easy to audit and version.
"""

from __future__ import annotations

from typing import Literal

from langchain_core.messages import AIMessage, BaseMessage, HumanMessage, SystemMessage
from pydantic import BaseModel

NO_ANSWER = "Sorry, I don't know."

ANSWER_SYSTEM = """\
You are a helpful assistant answering questions from a knowledge base.

Only respond to questions using information from the context below.
If the context is empty or does not contain the answer, respond exactly:
"{no_answer}"

Keep responses short and concise.

Context:
{context}
"""


class ChatMessage(BaseModel):
    """One turn of the conversation as sent by the client."""

    role: Literal["user", "assistant", "system"]
    content: str


def build_answer_prompt(messages: list[ChatMessage], context: str) -> list[BaseMessage]:
    """Build the grounded-answer prompt: system instructions, then history."""
    prompt: list[BaseMessage] = [
        SystemMessage(content=ANSWER_SYSTEM.format(no_answer=NO_ANSWER, context=context or "(none)"))
    ]
    for message in messages:
        if message.role == "user":
            prompt.append(HumanMessage(content=message.content))
        elif message.role == "assistant":
            prompt.append(AIMessage(content=message.content))
        else:
            prompt.append(SystemMessage(content=message.content))
    return prompt

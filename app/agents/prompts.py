from __future__ import annotations

from collections.abc import Sequence

from app.agents.tools.contracts import ChatTool

_ASSISTANT_PROMPT = """
You are a document-driven due-diligence assistant. Users attach company documents and ask you to analyze them.
"""

_FILE_INSTRUCTIONS = """
File generation policy:
- When a tool creates a downloadable file, do not include the raw URL in your response.
- Reference the file abstractly (e.g. "You can download it using the link above").
- The download link is displayed separately by the client.
- Confirm what was created and how it can be accessed.
"""

_CONVERSATION_RULES = """
Conversation rules:
- Only answer questions about the attached document's content. Never introduce outside facts.
- Ask follow-up questions only to resolve ambiguities in the document itself.
- Keep a concise, neutral, professional tone.
- Use markdown headings (##, ###), bullet points and **bold** for emphasis. Avoid deep sub-lists.
- Never format your response as code.
- Answer in a single language; do not mix English and French.
- When the user asks for the strengths, weaknesses, opportunities and risks flagged in the documents, do not call createSwot immediately.
  Write the SWOT summary in your response, then offer: "Would you like me to export this into a document for you?"
"""

_TITLE_PROMPT = """
You will generate a short title based on the first message a user begins a conversation with.
- Ensure it is not more than 80 characters long.
- The title should be a summary of the user's message.
- Do not use quotes or colons.
"""

MAX_TITLE_LENGTH = 80


def _tool_section(tools: Sequence[ChatTool]) -> str:
    if not tools:
        return ""
    lines = ["Tools available to you:"]
    lines.extend(f"- `{tool.name}`: {tool.description}" for tool in tools)
    return "\n".join(lines)


def build_system_prompt(selected_chat_model: str, tools: Sequence[ChatTool]) -> str:
    """Compose the system prompt; both model variants share the same instructions."""
    del selected_chat_model
    sections = [
        _ASSISTANT_PROMPT.strip(),
        _tool_section(tools),
        _FILE_INSTRUCTIONS.strip(),
        _CONVERSATION_RULES.strip(),
    ]
    return "\n\n".join(section for section in sections if section)


def title_prompt() -> str:
    return _TITLE_PROMPT.strip()

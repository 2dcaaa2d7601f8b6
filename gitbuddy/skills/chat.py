"""chat skill: conversational assistant; a plain text answer ends the run."""

from __future__ import annotations

from gitbuddy.engine.errors import GitBuddyError
from gitbuddy.engine.models import AgentRequest
from gitbuddy.skills.interface import Skill, context_section, language_instruction
from gitbuddy.tools.git_tools import GIT_READ_TOOLS

_PROMPT = """You are a helpful assistant for the git repository in the current working directory. Answer the user's question. Use the read-only file, search and git tools to look things up instead of guessing, and cite file paths and line numbers when you refer to code. When you have the answer, reply in plain text without calling a tool.

{language}"""


class ChatSkill(Skill):
    accepts_text_answer = True
    default_max_iterations = 15

    @property
    def name(self) -> str:
        return "chat"

    def system_prompt(self, request: AgentRequest) -> str:
        return _PROMPT.format(language=language_instruction(request.language)) + context_section(request.context)

    def allowed_tools(self) -> list[str]:
        return ["read_file", "list_directory", "list_files", "grep_file", "grep_directory", *GIT_READ_TOOLS]

    async def build_user_message(self, request: AgentRequest) -> str:
        if not request.query.strip():
            raise GitBuddyError("chat needs a question")
        return request.query.strip()

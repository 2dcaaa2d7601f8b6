from gitbuddy.skills.interface import Skill
from gitbuddy.skills.chat import ChatSkill
from gitbuddy.skills.commit import CommitSkill
from gitbuddy.skills.debug import DebugSkill
from gitbuddy.skills.pr import PRSkill
from gitbuddy.skills.report import ReportSkill

__all__ = ["Skill", "ChatSkill", "CommitSkill", "DebugSkill", "PRSkill", "ReportSkill"]

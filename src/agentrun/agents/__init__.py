from agentrun.agents.architect import ArchitectAgent, TeamDesign
from agentrun.agents.base import PromptedAgent
from agentrun.agents.critic import CriticAgent, CriticVerdict
from agentrun.agents.supervisor import SupervisorAgent
from agentrun.agents.titles import TitleAgent

__all__ = [
    "ArchitectAgent",
    "CriticAgent",
    "CriticVerdict",
    "PromptedAgent",
    "SupervisorAgent",
    "TeamDesign",
    "TitleAgent",
]

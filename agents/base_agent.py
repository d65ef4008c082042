"""
Base Agent Class - launch contract for a supervised interactive agent
"""

from abc import ABC, abstractmethod
from pathlib import Path
from typing import List, Optional


class BaseAgent(ABC):
    """Abstract base class for agents the supervisor can drive"""

    def __init__(self, agent_id: str, name: str, working_directory: Optional[str] = None):
        self.agent_id = agent_id
        self.name = name
        self.working_directory = working_directory

    @abstractmethod
    def build_command(self) -> List[str]:
        """Command line that starts the agent's interactive session"""
        pass

    @abstractmethod
    def initial_prompt(self, task_file: Path) -> str:
        """First instruction typed into the session"""
        pass

    @property
    def continue_text(self) -> str:
        """Nudge typed when the agent stops early"""
        return "Continue"

"""
Claude Code Agent - launches the interactive claude CLI for a task file
"""

from pathlib import Path
from typing import List, Optional

from .base_agent import BaseAgent


class ClaudeCodeAgent(BaseAgent):
    """Claude Code in interactive mode with permission prompts bypassed"""

    def __init__(self,
                 agent_id: str = "claude_coder",
                 working_directory: Optional[str] = None,
                 command: str = "claude",
                 args: Optional[List[str]] = None,
                 continue_text: str = "Continue"):

        super().__init__(
            agent_id=agent_id,
            name="Claude Code Agent",
            working_directory=working_directory,
        )
        self.command = command
        self.args = list(args) if args is not None else ["--dangerously-skip-permissions"]
        self._continue_text = continue_text

    @classmethod
    def for_task_file(cls, task_file: Path, config) -> "ClaudeCodeAgent":
        """Agent working in the directory that holds the task file"""
        return cls(
            working_directory=str(task_file.resolve().parent),
            command=config.agent_command,
            args=config.agent_args,
            continue_text=config.continue_text,
        )

    def build_command(self) -> List[str]:
        return [self.command, *self.args]

    def initial_prompt(self, task_file: Path) -> str:
        return (
            f"Please read and complete all tasks in the file: {task_file.name}\n"
            f"The file is located at: {task_file.resolve()}\n"
            "Work through each task and:\n"
            "1. Complete the task as described\n"
            "2. Edit the markdown file to change [ ] to [x] for each completed task"
        )

    @property
    def continue_text(self) -> str:
        return self._continue_text

# magistral: Load prompt templates shipped in magistral/resources via importlib.resources and build the per-request system message.

from importlib import resources
from typing import List

from .models import ChatMessage


def get_prompt(name: str, **kwargs) -> str:
    """
    Load a text prompt from the magistral resources directory.

    If kwargs are provided, apply str.format(**kwargs) so prompts can contain
    placeholders (e.g., {file_list}); literal braces in such templates are doubled.
    Without kwargs the raw text is returned unformatted.
    """
    data = resources.files("magistral").joinpath("resources").joinpath(name).read_text(encoding="utf-8")
    if kwargs:
        return data.format(**kwargs)
    return data


def system_message(file_list: List[str]) -> ChatMessage:
    """Synthesize the system message for one request from the current file listing."""
    listing = "\n".join(file_list) if file_list else "(no files)"
    return ChatMessage(role="system", content=get_prompt("system_prompt.txt", file_list=listing))

"""Configuration for the shell launcher."""

from collections.abc import Mapping, Sequence

from pydantic import BaseModel, Field


class ShellLauncherConfig(BaseModel):
    """Configuration for the shell launcher.

    `command` items and `stdin` may use the `{program}`, `{namespace}`,
    `{server}` and `{name}` placeholders.
    """

    command: Sequence[str] = ("iris", "session", "IRIS", "-U", "{namespace}")
    # Terminal sessions read the program from stdin; set to None when the
    # command carries `{program}` itself
    stdin: str | None = "Do {program}\nHalt\n"
    env: Mapping[str, str] = Field(default_factory=dict)

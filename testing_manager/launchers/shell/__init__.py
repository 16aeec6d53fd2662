"""Shell launcher module."""

from testing_manager.launchers.shell.config import ShellLauncherConfig
from testing_manager.launchers.shell.launcher import ShellLauncher, ShellProcessHandle
from testing_manager.launchers.shell.manifest import shell_manifest

__all__ = ["ShellLauncher", "ShellLauncherConfig", "ShellProcessHandle", "shell_manifest"]

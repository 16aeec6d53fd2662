"""Shell launcher manifest."""

from testing_manager.launchers.manifest import LauncherManifest
from testing_manager.launchers.shell.config import ShellLauncherConfig
from testing_manager.launchers.shell.launcher import ShellLauncher

shell_manifest = LauncherManifest(
    config_cls=ShellLauncherConfig,
    launcher_factory=ShellLauncher.from_config,
)

"""Launcher manifest definition for the plugin system."""

from collections.abc import Callable, Mapping
from dataclasses import dataclass
from typing import Any

from pydantic import BaseModel

from testing_manager.launchers.base import ProcessLauncher, TrackerFactory


@dataclass(frozen=True, kw_only=True)
class LauncherManifest[ConfigT: BaseModel]:
    """Manifest describing a launcher plugin.

    A launcher is built from the free-form `options` of the launcher settings,
    validated against `config_cls`, and the tracker factory that follows its
    processes.
    """

    config_cls: type[ConfigT]
    launcher_factory: Callable[[ConfigT, TrackerFactory], ProcessLauncher]

    def create(
        self, options: Mapping[str, Any], tracker_factory: TrackerFactory
    ) -> ProcessLauncher:
        """Validate launcher options and build the launcher.

        Raises:
            pydantic.ValidationError: If the options don't fit `config_cls`

        """
        return self.launcher_factory(self.config_cls.model_validate(options), tracker_factory)

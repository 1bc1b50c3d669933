"""Run the external script behind each command."""

import logging
import subprocess

from .config import ActionsConfig
from .models import ActionResult, Command, CommandKind, FreeCommand, SceneCommand

logger = logging.getLogger(__name__)

NO_OP_SCENES = {"", "void"}
REPORT_SCENE = "report"


def describe(command: Command) -> str:
    """Short human-readable form, e.g. ``solar charge 40``."""
    values = [str(v) for k, v in command.model_dump(mode="json").items() if k != "kind"]
    kind = CommandKind(command.kind).value
    return " ".join([kind, *values]).strip()


def is_no_op(command: Command) -> bool:
    """Commands that are recognized but deliberately do nothing."""
    if isinstance(command, SceneCommand):
        return command.name in NO_OP_SCENES
    if isinstance(command, FreeCommand):
        return command.date == ""
    return False


class ActionRunner:
    """Launches one script per command and reports what happened.

    Failures are logged and returned, never raised, so one bad command
    cannot hold up the rest of a scan pass.
    """

    def __init__(self, config: ActionsConfig | None = None):
        self.config = config or ActionsConfig()

    def build_argv(self, command: Command) -> list[str]:
        """Build the argument vector for ``command``."""
        shell = self.config.shell
        if isinstance(command, SceneCommand):
            if command.name == REPORT_SCENE:
                return [shell, str(self.config.report_path())]
            # "email" tells the scene script where the request came from
            return [shell, str(self.config.script_for(CommandKind.SCENE)), command.name, "email"]

        script = str(self.config.script_for(command.kind))
        if command.kind == CommandKind.SOLAR:
            return [shell, script, command.mode, str(command.value)]
        if command.kind == CommandKind.ALARM:
            return [shell, script, command.time]
        if command.kind == CommandKind.WATER:
            return [shell, script, str(command.hold_minutes)]
        if command.kind == CommandKind.FREE:
            return [shell, script, command.date]
        raise ValueError(f"Unsupported command kind: {command.kind}")

    def execute(self, command: Command) -> ActionResult:
        """Run the handler for ``command`` and capture its output."""
        label = describe(command)

        if is_no_op(command):
            logger.debug("Ignoring no-op command: %s", label)
            return ActionResult(kind=command.kind, skipped=True)

        try:
            argv = self.build_argv(command)
        except ValueError as e:
            logger.error("Cannot run %s: %s", label, e)
            return ActionResult(kind=command.kind, error=str(e))

        logger.info("Running %s: %s", label, " ".join(argv))

        try:
            completed = subprocess.run(
                argv,
                capture_output=True,
                text=True,
                timeout=self.config.timeout,
            )
        except subprocess.TimeoutExpired as e:
            logger.error("Command %s timed out after %ss", label, e.timeout)
            return ActionResult(
                kind=command.kind,
                argv=argv,
                stdout=_as_text(e.stdout),
                stderr=_as_text(e.stderr),
                error=f"timed out after {e.timeout}s",
            )
        except OSError as e:
            logger.error("Failed to run command %s (%s): %s", label, " ".join(argv), e)
            return ActionResult(kind=command.kind, argv=argv, error=str(e))

        result = ActionResult(
            kind=command.kind,
            argv=argv,
            returncode=completed.returncode,
            stdout=completed.stdout or "",
            stderr=completed.stderr or "",
        )
        self._log_output(label, result)

        if completed.returncode != 0:
            logger.error("Command %s exited with status %d", label, completed.returncode)
        return result

    def _log_output(self, label: str, result: ActionResult) -> None:
        for line in result.stdout.splitlines():
            if line.strip():
                logger.info("[%s] %s", label, line)
        for line in result.stderr.splitlines():
            if line.strip():
                logger.warning("[%s] %s", label, line)


def _as_text(data: str | bytes | None) -> str:
    if data is None:
        return ""
    if isinstance(data, bytes):
        return data.decode("utf-8", errors="replace")
    return data

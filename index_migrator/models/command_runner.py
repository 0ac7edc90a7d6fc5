import os
import subprocess
import logging
import sys
from typing import Any, Dict, List, Optional

from index_migrator.models.command_result import CommandResult

logger = logging.getLogger(__name__)

FlagOnlyArgument = None
# Same code the coreutils `timeout` command exits with
TIMEOUT_RETURN_CODE = 124


class CommandRunner:
    def __init__(self, command_root: str, command_args: Dict[str, Any], sensitive_fields: Optional[List[str]] = None,
                 log_file: Optional[str] = None, timeout: Optional[float] = None,
                 env: Optional[Dict[str, str]] = None):
        self.command_args = command_args
        self.command = [command_root]
        for key, value in command_args.items():
            self.command.append(key)
            if value is not FlagOnlyArgument:
                if type(value) is not str:
                    value = str(value)
                self.command.append(value)

        self.sensitive_fields = sensitive_fields
        self.log_file = log_file
        self.timeout = timeout
        self.env = {**os.environ, **env} if env else None

    def run(self, print_to_console=True) -> CommandResult:
        if self.log_file:
            return self._run_with_log_file(self.log_file)
        return self._run_as_synchronous_process(print_to_console=print_to_console)

    def sanitized_command(self) -> List[str]:
        if not self.sensitive_fields:
            return self.command
        display_command = self.command.copy()
        for field in self.sensitive_fields:
            if field in display_command:
                field_index = display_command.index(field)
                if len(display_command) > (field_index + 1) and \
                        display_command[field_index + 1] == str(self.command_args[field]):
                    display_command[field_index + 1] = "*" * 8
        return display_command

    def _run_as_synchronous_process(self, print_to_console: bool) -> CommandResult:
        try:
            cmd_output = subprocess.run(self.command,
                                        stdout=subprocess.PIPE,
                                        stderr=subprocess.PIPE,
                                        text=True,
                                        check=True,
                                        timeout=self.timeout,
                                        env=self.env)
            if print_to_console:
                if cmd_output.stdout:
                    sys.stdout.write(cmd_output.stdout)
                if cmd_output.stderr:
                    sys.stderr.write(cmd_output.stderr)
            return CommandResult(success=True, value="Command executed successfully", output=cmd_output)
        except subprocess.CalledProcessError as e:
            raise CommandRunnerError(e.returncode, self.sanitized_command(), e.stdout, e.stderr)
        except subprocess.TimeoutExpired as e:
            raise CommandRunnerError(TIMEOUT_RETURN_CODE, self.sanitized_command(), e.stdout,
                                     f"Timed out after {self.timeout} seconds")

    def _run_with_log_file(self, log_file: str) -> CommandResult:
        # Output is appended so that a replayed job keeps the history of earlier attempts
        with open(log_file, "a") as f:
            f.write(f"$ {' '.join(self.sanitized_command())}\n")
            f.flush()
            try:
                cmd_output = subprocess.run(self.command, stdout=f, stderr=subprocess.STDOUT, text=True,
                                            check=True, timeout=self.timeout, env=self.env)
            except subprocess.CalledProcessError as e:
                raise CommandRunnerError(e.returncode, self.sanitized_command(),
                                         stderr=f"See log file {log_file}")
            except subprocess.TimeoutExpired:
                raise CommandRunnerError(TIMEOUT_RETURN_CODE, self.sanitized_command(),
                                         stderr=f"Timed out after {self.timeout} seconds, see log file {log_file}")
        return CommandResult(success=True, value=f"Command executed successfully, output written to {log_file}",
                             output=cmd_output)


class CommandRunnerError(subprocess.CalledProcessError):
    def __init__(self, returncode, cmd, output=None, stderr=None):
        super().__init__(returncode, cmd, output=output, stderr=stderr)

    def __str__(self):
        message = super().__str__()
        if self.stderr:
            message += f" {self.stderr}"
        return message

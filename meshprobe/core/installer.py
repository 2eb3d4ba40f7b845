"""
Install a probe on this machine as a Docker container.
"""

import shutil
import subprocess
import time
from typing import Callable, List, Optional

from loguru import logger
from pydantic import BaseModel

CONTAINER_NAME = "globalping-probe"
PROBE_IMAGE = "globalping/globalping-probe"

DOCKER_INSTALL_URL = "https://docs.docker.com/engine/install/"


class CommandResult(BaseModel):
    """Result of a docker command."""

    command: str
    return_code: int
    stdout: str
    stderr: str
    duration: float

    @property
    def success(self) -> bool:
        return self.return_code == 0


class ProbeInstaller:
    """Check for Docker and start the probe container."""

    def __init__(self, runner: Optional[Callable[..., subprocess.CompletedProcess]] = None, docker: str = "docker"):
        self.runner = runner or subprocess.run
        self.docker = docker

    def docker_available(self) -> bool:
        """True when the docker binary is on PATH and the daemon answers."""
        if shutil.which(self.docker) is None:
            logger.info(f"{self.docker} not found in PATH")
            return False
        return self.run_command([self.docker, "info"]).success

    def is_installed(self) -> bool:
        """True when a container with the probe's name already exists."""
        result = self.run_command(
            [self.docker, "ps", "-a", "--filter", f"name=^{CONTAINER_NAME}$", "--format", "{{.Names}}"]
        )
        return result.success and CONTAINER_NAME in result.stdout.split()

    def install(self, timeout: int = 300) -> CommandResult:
        """Pull the probe image and run it detached, restarting with the host."""
        return self.run_command(
            [
                self.docker, "run", "-d",
                "--log-driver", "local",
                "--network", "host",
                "--restart=always",
                "--name", CONTAINER_NAME,
                PROBE_IMAGE,
            ],
            timeout=timeout,
        )

    def run_command(self, command: List[str], timeout: int = 30) -> CommandResult:
        start_time = time.time()
        cmd_str = " ".join(command)
        logger.info(f"Executing command: {cmd_str}")

        try:
            result = self.runner(command, capture_output=True, text=True, timeout=timeout)
        except subprocess.TimeoutExpired:
            logger.error(f"Command timed out after {timeout}s: {cmd_str}")
            return CommandResult(
                command=cmd_str,
                return_code=-1,
                stdout="",
                stderr=f"Command timed out after {timeout} seconds",
                duration=time.time() - start_time,
            )
        except OSError as e:
            logger.error(f"Command failed: {cmd_str} - {e}")
            return CommandResult(command=cmd_str, return_code=-1, stdout="", stderr=str(e),
                                 duration=time.time() - start_time)

        duration = time.time() - start_time
        logger.info(f"Command completed: {cmd_str} (return code: {result.returncode}, duration: {duration:.2f}s)")
        return CommandResult(
            command=cmd_str,
            return_code=result.returncode,
            stdout=result.stdout or "",
            stderr=result.stderr or "",
            duration=duration,
        )

"""Copy files to test machines over their SSH command channel."""

import os
import shlex

from kola.core.exceptions import DeploymentError, KolaError
from kola.core.structured_logging import get_logger
from kola.platform.base import Machine


def scp_file(machine: Machine, src: str) -> None:
    """
    Copy src to the login user's home directory on machine, mode 0755.

    The machine reads the file from stdin and installs it, so no scp or sftp
    subsystem is needed on the remote side.

    Raises:
        DeploymentError: The file could not be read or installed
    """
    filename = os.path.basename(src)
    logger = get_logger(__name__)

    try:
        fin = open(src, 'rb')
    except OSError as e:
        raise DeploymentError(f"opening {src}: {e}", cause=e) from e

    with fin:
        try:
            session = machine.ssh_session()
        except KolaError as e:
            raise DeploymentError(f"Error establishing ssh session: {e.message}", cause=e) from e

        with session:
            session.stdin = fin
            cmd = f"install -m 0755 /dev/stdin ./{shlex.quote(filename)}"
            try:
                session.combined_output(cmd)
            except KolaError as e:
                raise DeploymentError(f"installing {filename} on {machine.id}: {e.message}",
                                      cause=e) from e

    logger.debug(f"Copied {src} to {machine.id}")

# SPDX-FileCopyrightText: 2026 Guestroot Contributors
#
# SPDX-License-Identifier: GPL-3.0-or-later

"""The pending setup script left in a freshly provisioned guest.

Provisioning drops ``/prepare.sh`` into the guest.  On an interactive
entry the user is offered to run it (or get rid of it).  When the script
completes it sets its own mode to ``0500``; a script found with that
mode has finished and only needs removing.
"""

from __future__ import annotations

import stat
from pathlib import Path
from typing import TYPE_CHECKING

from ..errors import SessionError
from .constants import SETUP_DONE_MODE, SETUP_MAX_PASSES, SETUP_SCRIPT
from .state import SessionState

if TYPE_CHECKING:
    from .controller import SessionController


def setup_script_path(root: Path) -> Path:
    return root / SETUP_SCRIPT.lstrip("/")


def is_finished(script: Path) -> bool:
    return stat.S_IMODE(script.stat().st_mode) == SETUP_DONE_MODE


def run_setup_workflow(controller: SessionController) -> None:
    """Offer, run and clean up the setup script.

    Each run is a nested direct session for the script alone.  Its
    mounts are torn down with the parent session, not when it returns.
    A run that exits 0 without marking the script finished is offered
    again, a bounded number of times.

    Raises:
        SessionError: if the script exits nonzero.
    """
    script = setup_script_path(controller.chroot.root)
    progress = controller.progress

    for _ in range(SETUP_MAX_PASSES):
        if not script.is_file():
            return
        controller.advance(SessionState.RUNNING_SETUP)

        if is_finished(script):
            script.unlink()
            progress.dim(f"Removed completed setup script {SETUP_SCRIPT}")
            return

        question = f"{SETUP_SCRIPT} has not finished setting up this chroot. Run it now? (no deletes it)"
        if not progress.confirm(question, default=True, stream=controller.stdin):
            script.unlink()
            progress.dim(f"Deleted {SETUP_SCRIPT}")
            return

        progress.info(f"Running {SETUP_SCRIPT}")
        code = controller.sub_session(SETUP_SCRIPT).run()
        if code != 0:
            raise SessionError(f"Setup failed: {SETUP_SCRIPT} exited with status {code}")

    if not script.is_file():
        return
    if is_finished(script):
        script.unlink()
        progress.dim(f"Removed completed setup script {SETUP_SCRIPT}")
    else:
        progress.warning(f"{SETUP_SCRIPT} is still pending after {SETUP_MAX_PASSES} runs, continuing")

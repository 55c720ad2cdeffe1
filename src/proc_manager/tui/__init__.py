"""Terminal dashboard for proc-manager."""

from proc_manager.tui.app import ProcManagerApp, run_tui

__all__ = ["ProcManagerApp", "run_tui"]

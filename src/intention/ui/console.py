"""Console output formatting utilities for Intention."""

from __future__ import annotations

import sys
from typing import Optional

from intention.settings import DEBUG


class Console:
    """Centralized console output formatting."""
    
    def __init__(self, debug: bool = False):
        """
        Initialize console formatter.
        
        Args:
            debug: If True, show detailed output including stack traces
        """
        self.debug = debug
    
    def print_header(self, title: str) -> None:
        """Print a section header."""
        print(f"\n{title}")
        print("-" * len(title))
    
    def print_server_started(self, host: str, port: int) -> None:
        """Print server start information."""
        print("\nSERVER STARTED")
        print(f"Listening on: http://{host}:{port}")
        print()
    
    def print_job_started(self, job_id: str, repo_url: str) -> None:
        """Print job start message."""
        print(f"\nJOB STARTED: {job_id}")
        print(f"Repository: {repo_url}")
    
    def print_job_log(self, job_id: str, line: str) -> None:
        """Echo a job log line (first line only unless debug is on)."""
        if self.debug:
            print(f"[{job_id[:8]}] {line}")
        else:
            print(f"[{job_id[:8]}] {line.splitlines()[0] if line else ''}")
    
    def print_job_finished(
        self,
        job_id: str,
        status: str,
        duration: Optional[float] = None,
    ) -> None:
        """Print job completion message."""
        print(f"\nJOB FINISHED: {job_id}")
        print(f"Status: {status}")
        if duration is not None:
            print(f"Duration: {duration:.1f}s")
    
    def print_feature_failed(self, index: int, title: str, reason: str) -> None:
        """Print a per-feature failure during test refresh."""
        print(f"FEATURE FAILED: #{index} {title}", file=sys.stderr)
        if self.debug:
            print(f"Error details: {reason}", file=sys.stderr)
        else:
            print(f"Error: {reason.splitlines()[0] if reason else 'Unknown error'}", file=sys.stderr)
    
    def print_error(
        self,
        title: str,
        message: str,
        details: Optional[list[str]] = None,
        suggestion: Optional[str] = None,
    ) -> None:
        """
        Print structured error message.
        
        Args:
            title: Error title
            message: Main error message
            details: Optional list of detail lines
            suggestion: Optional suggestion for user
        """
        print(f"\nERROR: {title}", file=sys.stderr)
        print(f"{message}", file=sys.stderr)
        if details:
            for detail in details:
                print(f"  {detail}", file=sys.stderr)
        if suggestion:
            print(f"\n{suggestion}", file=sys.stderr)
    
    def print_exception(self, exc: BaseException) -> None:
        """Print exception, with full traceback only in debug mode."""
        if self.debug:
            import traceback
            traceback.print_exception(type(exc), exc, exc.__traceback__)
        else:
            print(f"Error: {exc}", file=sys.stderr)
    
    def print_info(self, message: str) -> None:
        """Print informational message."""
        print(message)
    
    def print_debug(self, message: str) -> None:
        """Print debug message (only if debug mode enabled)."""
        if self.debug:
            print(f"[DEBUG] {message}", file=sys.stderr)


# Global console instance (replaced by the CLI when --debug is given)
_console: Optional[Console] = None


def get_console() -> Console:
    """Get the global console instance."""
    global _console
    if _console is None:
        _console = Console(debug=DEBUG)
    return _console


def set_console(console: Console) -> None:
    """Set the global console instance."""
    global _console
    _console = console

"""HTTP control surface."""

from skimmer.control.server import create_control_app, run_control_server

__all__ = ["create_control_app", "run_control_server"]

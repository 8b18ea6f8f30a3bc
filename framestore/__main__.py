"""Run framestore with ``python -m framestore``."""

from .main import run

run()

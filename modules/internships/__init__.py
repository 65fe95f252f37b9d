# Keep this TINY so importing the package never drags in heavy deps.
from . import lib  # so: from modules.internships import lib
from .main import ingest, reset_breakers, run, validate  # so: from modules.internships import run

__all__ = ["ingest", "lib", "reset_breakers", "run", "validate"]

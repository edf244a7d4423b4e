# Keep this TINY so importing the package never launches a browser.
from . import lib  # so: from modules.listing_watch import lib
from .main import run  # so: from modules.listing_watch import run

__all__ = ["lib", "run"]

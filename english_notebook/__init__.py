"""
English Study Notebook

A flashcard notebook of English/Japanese sentence pairs with AI translation,
AI speech, an optional Supabase mirror and an offline cache of the app shell.
"""

from . import db
from . import notes
from . import cloud
from . import offline_cache
from . import tutor
from . import client
from . import controller

__version__ = "0.1.0"
__all__ = ["db", "notes", "cloud", "offline_cache", "tutor", "client", "controller"]

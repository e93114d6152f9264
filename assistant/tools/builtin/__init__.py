"""Import builtin tool modules to trigger @register_tool decorators."""
from . import memory
from . import tasks
from . import files
from . import command
from . import utility
from . import web
from . import git
from . import grep

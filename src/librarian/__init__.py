"""Context-bundle librarian for the docdex index service."""

from .assembler import ContextAssembler
from .bundle import ContextBundle, ContextSelection
from .config import ContextAssemblerOptions, apply_deep_scan_preset, options_from_config
from .errors import DeepInvestigationError, LibrarianError, PathOutsideWorkspaceError
from .events import EventChannel
from .serializer import serialize_bundle

__all__ = [
    "ContextAssembler",
    "ContextAssemblerOptions",
    "ContextBundle",
    "ContextSelection",
    "DeepInvestigationError",
    "EventChannel",
    "LibrarianError",
    "PathOutsideWorkspaceError",
    "apply_deep_scan_preset",
    "options_from_config",
    "serialize_bundle",
]

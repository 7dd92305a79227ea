from .config import CVServerSettings, load_settings
from .errors import InitializationFailure
from .service import (
    DispatcherHandle,
    InitializationReport,
    InitializedServer,
    initialize_dispatcher,
    initialize_from_settings,
)

__all__ = [
    "CVServerSettings",
    "DispatcherHandle",
    "InitializationFailure",
    "InitializationReport",
    "InitializedServer",
    "initialize_dispatcher",
    "initialize_from_settings",
    "load_settings",
]

from importlib import import_module
from typing import Any

__all__ = [
    "AppConfig",
    "CanvasEditor",
    "CredentialPool",
    "Dispatcher",
    "EmailSequenceGenerator",
    "FormData",
    "MODEL_REGISTRY",
    "export_to_mermaid",
    "load_document",
    "save_document",
]

_EXPORTS = {
    "AppConfig": ".config",
    "CanvasEditor": ".canvas_editor",
    "CredentialPool": ".credentials",
    "Dispatcher": ".dispatch",
    "EmailSequenceGenerator": ".sequence_generator",
    "FormData": ".sequence_generator",
    "MODEL_REGISTRY": ".model_registry",
    "export_to_mermaid": ".graph_logic",
    "load_document": ".canvas_io",
    "save_document": ".canvas_io",
}


def __getattr__(name: str) -> Any:
    if name in _EXPORTS:
        module = import_module(_EXPORTS[name], __name__)
        return getattr(module, name)
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")

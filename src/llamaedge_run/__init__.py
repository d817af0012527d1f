"""Interactive helper for running GGUF models with the LlamaEdge apps on WasmEdge."""

__version__ = "0.1.0"

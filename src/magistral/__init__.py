# magistral: Chat-driven coding assistant that streams model output, extracts file actions and applies them to a virtual or on-disk workspace.

__version__ = "0.1.0"

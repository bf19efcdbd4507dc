"""Core configuration, types, exceptions and host interfaces."""

"""UsagePulse - live token usage and provider health for OpenCode."""

__version__ = "0.1.0"

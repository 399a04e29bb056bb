# CLI package
"""
tlstap CLI package.
Exports the main CLI group and commands.
"""

__all__ = ['cli']

def __getattr__(name):
    """Lazy import so `import tlstap_cli` stays cheap (scapy loads slowly)."""
    if name == 'cli':
        from .main import cli
        return cli
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")

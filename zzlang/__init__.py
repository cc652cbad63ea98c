"""Name resolution and C/Rust code emission for the ZZ language."""

__version__ = "0.1.0"
__all__ = ["ast", "scope", "absolute", "cwriter", "cemitter", "rsemitter"]
"""SEO Autofix: generate, review and apply fixes for detected SEO issues."""

__version__ = "0.1.0"

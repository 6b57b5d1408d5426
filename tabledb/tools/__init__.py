"""Command-line tools for tabledb."""

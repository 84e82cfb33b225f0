"""EntityQL - compile nested entity selections into a single SQL query."""

__version__ = "0.1.0"

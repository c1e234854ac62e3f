"""Infrastructure Layer: Contains concrete implementations and adapters.

Connects the application to the outside world (the generation API, the
console, configuration files) and hosts the governance services themselves.
"""

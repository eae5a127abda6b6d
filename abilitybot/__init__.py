"""abilitybot: declarative, access-controlled Telegram command dispatch."""

__version__ = "0.1.0"

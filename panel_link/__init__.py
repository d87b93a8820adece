"""panel-link: verified chat-user to game-panel server linking."""

__version__ = "1.0.0"

"""Mental Buddy: chat sessions with a compassionate AI companion."""

__version__ = "1.0.0"

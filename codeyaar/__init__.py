"""codeyaar — AI gateway for the Code-Yaar learning platform."""

__version__ = "0.3.0"

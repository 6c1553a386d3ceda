"""strokelink: drive a linear actuator remotely through a session relay."""

__version__ = "0.1.0"

"""Mobile App Generator - build orchestration for website-wrapping mobile apps.

This package turns an app configuration snapshot into installable Android
and iOS packages by customizing a Capacitor project template per job and
driving the native toolchains as external processes.
"""

__version__ = "0.1.0"
__all__ = ["__version__"]

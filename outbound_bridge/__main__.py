"""
Entry point for running outbound_bridge as a module.

Usage:
    python -m outbound_bridge
    python -m outbound_bridge --port 8080 --debug
"""

from .src.main import main

if __name__ == "__main__":
    main()

"""
ReplayLink CLI Entry Point

Allows running the package as a module: python -m replaylink
"""

from replaylink.cli import main

if __name__ == "__main__":
    main()

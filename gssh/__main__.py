"""
Run gssh as a module: python -m gssh
"""

from .cli import main

if __name__ == "__main__":
    main()

#!/usr/bin/env python
"""
Draw vs AI - Main Entry Point
=============================
Run the draw-and-guess game.
"""

import sys
from pathlib import Path

# Load environment variables from .env file
from dotenv import load_dotenv
load_dotenv(Path(__file__).parent / ".env")

from drawvsai.ui import main

if __name__ == "__main__":
    sys.exit(main())

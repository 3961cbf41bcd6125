#!/usr/bin/env python3
"""
Standalone script to run NexusRAG commands from a checkout.

Usage:
    uv run scripts/run_pipeline.py deep_search --query "Question"
    uv run scripts/run_pipeline.py ask --query "What do my notes say about X?"
"""

import sys
from pathlib import Path

# Add src to path for development
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from nexusrag.cli.pipeline import main

if __name__ == "__main__":
    main()
